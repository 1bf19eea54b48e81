"""Keyword to folder routing rules backed by a line-oriented text file."""

from pathlib import Path

from loguru import logger

from zettelkasten.domain.rules import Rule, RuleSet
from zettelkasten.errors import ConfigError, DuplicateKeywordError, MissingRuleFileError

RULES_TEMPLATE = """# Zettelkasten keyword mapping rules
# Format: keyword: folder
keyword1: folder1
"""


class RuleStore:
    """Single source of truth for keyword routing.

    The rule file is read fresh on every ``load()``; edits made between runs
    are picked up without any staleness detection.
    """

    def __init__(self, rules_file: Path, links_dir: Path = Path(".")):
        self.rules_file = Path(rules_file)
        self.links_dir = Path(links_dir)

    def exists(self) -> bool:
        return self.rules_file.is_file()

    def load(self) -> RuleSet:
        """Parse the rule file.

        Blank lines and ``#`` comments are skipped. Every other line contributes
        its first token (colons stripped) as the keyword and its second token as
        the folder.

        Returns:
            RuleSet in file order

        Raises:
            MissingRuleFileError: If the rule file does not exist
        """
        if not self.exists():
            raise MissingRuleFileError(f"Rules file does not exist: {self.rules_file}")

        rules: dict[str, Rule] = {}
        text = self.rules_file.read_text(encoding="utf-8")
        for lineno, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            tokens = stripped.split()
            keyword = tokens[0].replace(":", "")
            if not keyword or len(tokens) < 2:
                logger.warning(f"Skipping malformed rule on line {lineno}: {line!r}")
                continue

            if keyword in rules:
                logger.warning(f"Keyword '{keyword}' redefined on line {lineno}; last one wins")
            rules[keyword] = Rule(keyword=keyword, folder=tokens[1])

        logger.debug(f"Loaded {len(rules)} rules from {self.rules_file}")
        return RuleSet(rules=rules)

    def add_rule(self, keyword: str, folder: str) -> Rule:
        """Append a rule; the write is durable once this returns.

        Raises:
            DuplicateKeywordError: If the keyword already has a rule
            ConfigError: If the keyword or folder cannot be expressed in the rule format
        """
        for value in (keyword, folder):
            if not value or any(ch.isspace() for ch in value):
                raise ConfigError(f"Rule values must be non-empty without whitespace: {value!r}")
        if ":" in keyword:
            raise ConfigError(f"Keyword may not contain ':': {keyword!r}")

        rules = self.load()
        if keyword in rules:
            raise DuplicateKeywordError(
                f"Keyword '{keyword}' already maps to '{rules.get(keyword).folder}'"
            )

        existing = self.rules_file.read_text(encoding="utf-8")
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        with open(self.rules_file, "a", encoding="utf-8") as f:
            f.write(f"{prefix}{keyword}: {folder}\n")
            f.flush()

        logger.info(f"Added rule {keyword} -> {folder}")
        return Rule(keyword=keyword, folder=folder)

    def folder_path(self, rule: Rule) -> Path:
        folder = Path(rule.folder).expanduser()
        return folder if folder.is_absolute() else self.links_dir / folder

    def resolve(self, keyword: str, rules: RuleSet | None = None) -> Path | None:
        """Return the folder a keyword routes to, or None if no rule exists."""
        rule = (rules or self.load()).get(keyword)
        if rule is None:
            return None
        return self.folder_path(rule)

    def create_folders(self) -> list[Path]:
        """Create the folder of every rule, returning the ones that were missing."""
        created = []
        for rule in self.load().rules.values():
            folder = self.folder_path(rule)
            if folder.is_dir():
                logger.debug(f"Folder already exists: {folder} for keyword: {rule.keyword}")
                continue
            folder.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created folder: {folder} for keyword: {rule.keyword}")
            created.append(folder)
        return created

    def browse(self, keyword: str) -> list[Path]:
        """List the note files and links filed under a keyword's folder."""
        folder = self.resolve(keyword)
        if folder is None:
            raise ConfigError(f"No rule for keyword '{keyword}'")
        if not folder.is_dir():
            return []
        return sorted(
            p
            for p in folder.iterdir()
            if p.suffix in (".md", ".org") and (p.is_file() or p.is_symlink())
        )

    def write_template(self) -> bool:
        """Create an example rule file if none exists yet."""
        if self.rules_file.exists():
            return False
        self.rules_file.parent.mkdir(parents=True, exist_ok=True)
        self.rules_file.write_text(RULES_TEMPLATE, encoding="utf-8")
        logger.info(f"Created example {self.rules_file}")
        return True
