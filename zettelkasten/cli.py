"""Command line interface for indexing notes and reviewing keyword suggestions."""

import argparse
import sys
from pathlib import Path

from loguru import logger

from zettelkasten.config import Settings
from zettelkasten.dictionaries import DictionaryIndex, create_dictionary
from zettelkasten.domain.note import Note
from zettelkasten.errors import ZettelError
from zettelkasten.ingestion.orchestrator import ScanOrchestrator
from zettelkasten.ingestion.rule_store import RuleStore
from zettelkasten.ingestion.workspace import initialize, new_note
from zettelkasten.suggestions.http_suggester import HttpSuggester
from zettelkasten.suggestions.pipeline import SuggestionPipeline


def configure_logging(settings: Settings) -> None:
    """Log everything to the log file, and to stderr at the configured level."""
    logger.configure(
        handlers=[
            {"sink": sys.stderr, "level": settings.effective_log_level},
            {"sink": str(settings.log_file), "level": "DEBUG", "rotation": "10 MB"},
        ]
    )


def build_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "originals_dir": args.originals_dir,
        "rules_file": args.rules_file,
        "links_dir": args.links_dir,
        "backend": args.backend,
        "debug": args.debug or None,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def get_rule_store(settings: Settings) -> RuleStore:
    return RuleStore(settings.rules_file, links_dir=settings.links_dir)


def build_pipeline(
    settings: Settings, dictionary: DictionaryIndex, orchestrator: ScanOrchestrator
) -> SuggestionPipeline:
    return SuggestionPipeline(
        suggester=HttpSuggester.from_settings(settings),
        dictionary=dictionary,
        orchestrator=orchestrator,
        default_confidence=settings.default_confidence,
    )


def cmd_init(settings: Settings, args: argparse.Namespace) -> int:
    created = initialize(settings)
    for path in created:
        print(f"Created {path}")
    if not created:
        print("Workspace already initialized")
    return 0


def cmd_scan(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        orchestrator = ScanOrchestrator.from_settings(settings, dictionary)
        report = orchestrator.scan_note(args.note) if args.note else orchestrator.run()
    finally:
        dictionary.close()

    for link in report.created_links:
        print(f"Created link: {link}")
    for path, keywords in report.unmapped.items():
        print(f"Unmapped keywords in {Path(path).name}: {', '.join(keywords)}")
    for note in report.failures:
        print(f"Failed: {note.path}: {note.outcome.message}")
    if not report.backends_in_sync:
        print("Warning: flat and relational dictionaries disagree until the next successful scan")
    if not report.committed:
        print(f"Scan failed: {report.outcome.message}")
        return 1
    return 1 if report.failures else 0


def cmd_folders(settings: Settings, args: argparse.Namespace) -> int:
    for folder in get_rule_store(settings).create_folders():
        print(f"Created folder: {folder}")
    return 0


def cmd_new(settings: Settings, args: argparse.Namespace) -> int:
    print(new_note(settings, " ".join(args.title)))
    return 0


def cmd_dictionary(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        for entry in dictionary.entries():
            print(f"{entry.filename}: {', '.join(entry.paths)}")
    finally:
        dictionary.close()
    return 0


def cmd_browse(settings: Settings, args: argparse.Namespace) -> int:
    rule_store = get_rule_store(settings)
    if not args.keyword:
        for rule in rule_store.load().rules.values():
            print(f"{rule.keyword}: {rule.folder}")
        return 0

    notes = rule_store.browse(args.keyword)
    if not notes:
        print(f"No notes filed under '{args.keyword}'")
    for path in notes:
        print(path)
    return 0


def cmd_suggest(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        orchestrator = ScanOrchestrator.from_settings(settings, dictionary)
        pipeline = build_pipeline(settings, dictionary, orchestrator)
        report = pipeline.suggest_all([Path(n) for n in args.notes] if args.notes else None)
    finally:
        dictionary.close()

    for path, keywords in report.suggested.items():
        if keywords:
            print(f"{Path(path).name}: {', '.join(keywords)}")
    for path, outcome in report.failures.items():
        print(f"Failed: {path}: {outcome.message}")
    return 1 if report.failures else 0


def cmd_review(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        suggestions = dictionary.pending_suggestions(Note.from_path(Path(args.note)))
    finally:
        dictionary.close()

    if not suggestions:
        print("No pending suggestions")
    for suggestion in suggestions:
        print(f"[{suggestion.id}] {suggestion.keyword} ({suggestion.confidence:.2f})")
    return 0


def cmd_apply(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        orchestrator = ScanOrchestrator.from_settings(settings, dictionary)
        pipeline = SuggestionPipeline(
            dictionary=dictionary,
            orchestrator=orchestrator,
            default_confidence=settings.default_confidence,
        )
        for suggestion_id in args.ids:
            result = pipeline.apply(suggestion_id)
            if result.report is None:
                print(f"Suggestion {suggestion_id} was already consumed")
                continue
            print(f"Applied {result.suggestion.keyword} to {Path(result.suggestion.note_path).name}")
            for link in result.report.created_links:
                print(f"Created link: {link}")
    finally:
        dictionary.close()
    return 0


def cmd_ignore(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings)
    try:
        orchestrator = ScanOrchestrator.from_settings(settings, dictionary)
        pipeline = SuggestionPipeline(dictionary=dictionary, orchestrator=orchestrator)
        for suggestion_id in args.ids:
            print(f"Ignored {pipeline.ignore(suggestion_id).keyword}")
    finally:
        dictionary.close()
    return 0


def cmd_check(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings, allow_damaged=True)
    try:
        anomalies = dictionary.integrity_check()
    finally:
        dictionary.close()

    for anomaly in anomalies:
        print(anomaly)
    print("Dictionary is healthy" if not anomalies else f"{len(anomalies)} anomalies found")
    return 1 if anomalies else 0


def cmd_repair(settings: Settings, args: argparse.Namespace) -> int:
    dictionary = create_dictionary(settings, allow_damaged=True)
    try:
        report = dictionary.repair()
    finally:
        dictionary.close()

    print(f"Backup written to {report.backup_path}")
    if report.integrity_ok:
        print("Integrity check passed; database compacted")
        return 0
    for anomaly in report.anomalies:
        print(f"Anomaly: {anomaly}")
    for table, count in report.imported.items():
        print(f"{table}: {count} rows restored, {report.failed.get(table, 0)} failed")
    return 0


def cmd_config_save(settings: Settings, args: argparse.Namespace) -> int:
    print(f"Saved settings to {settings.save(args.env_file)}")
    return 0


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zettelkasten", description="Index notes by {{keyword}} markers"
    )
    parser.add_argument("--originals-dir", type=Path, help="Folder containing the original notes")
    parser.add_argument("--rules-file", type=Path, help="Keyword to folder rules file")
    parser.add_argument("--links-dir", type=Path, help="Base folder for relative rule folders")
    parser.add_argument("--backend", choices=["flat", "sqlite", "mirrored"], help="Dictionary backend")
    parser.add_argument("--debug", action="store_true", help="Log debug output to the console")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the originals folder, rules and dictionary files")

    scan = subparsers.add_parser("scan", help="Index notes and create keyword links")
    scan.add_argument("--note", type=Path, help="Index only this note")

    subparsers.add_parser("folders", help="Create the folder of every rule")

    new = subparsers.add_parser("new", help="Create a note from the template")
    new.add_argument("title", nargs="*", help="Note title")

    subparsers.add_parser("dictionary", help="Show the dictionary")

    browse = subparsers.add_parser("browse", help="List keywords, or the notes filed under one")
    browse.add_argument("keyword", nargs="?")

    suggest = subparsers.add_parser("suggest", help="Ask the suggestion service for keywords")
    suggest.add_argument("notes", nargs="*", help="Notes to process, all notes if omitted")

    review = subparsers.add_parser("review", help="Show pending suggestions of a note")
    review.add_argument("note", help="Path of the note")

    for name, help_text in (("apply", "Apply suggestions"), ("ignore", "Ignore suggestions")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("ids", nargs="+", type=int, help="Suggestion IDs")

    subparsers.add_parser("check", help="Run the dictionary integrity check")
    subparsers.add_parser("repair", help="Back up and repair the relational dictionary")

    config_save = subparsers.add_parser("config-save", help="Write the current settings to a dotenv file")
    config_save.add_argument("--env-file", default=".env")

    return parser


COMMANDS = {
    "init": cmd_init,
    "scan": cmd_scan,
    "folders": cmd_folders,
    "new": cmd_new,
    "dictionary": cmd_dictionary,
    "browse": cmd_browse,
    "suggest": cmd_suggest,
    "review": cmd_review,
    "apply": cmd_apply,
    "ignore": cmd_ignore,
    "check": cmd_check,
    "repair": cmd_repair,
    "config-save": cmd_config_save,
}


def main(argv: list[str] | None = None) -> int:
    args = get_parser().parse_args(argv)
    settings = build_settings(args)
    configure_logging(settings)

    try:
        return COMMANDS[args.command](settings, args)
    except ZettelError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
