PROMPT_TEMPLATE = """You help file notes in a Zettelkasten by keyword.

Read the note below and propose up to {limit} short keywords that describe its topics.
Use single words or words joined by underscores. Do not repeat keywords that the note
already marks as {{{{keyword}}}}.

Return only a JSON array of strings, for example ["project", "reading_list"].

Note:
{content}
"""


def get_prompt(*, content: str, limit: int = 5) -> str:
    return PROMPT_TEMPLATE.format(content=content, limit=limit)
