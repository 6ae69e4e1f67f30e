"""Character offset to line/column conversion for engine error reporting."""


def offset_to_position(source: str, offset: int | None) -> tuple[int | None, int | None]:
    """1-based ``(line, column)`` of ``offset`` in ``source``; ``(None, None)`` if unknown."""
    if offset is None or offset < 0 or not isinstance(source, str):
        return None, None
    offset = min(offset, len(source))
    preceding = source[:offset]
    line = preceding.count("\n") + 1
    column = offset - (preceding.rfind("\n") + 1) + 1
    return line, column
