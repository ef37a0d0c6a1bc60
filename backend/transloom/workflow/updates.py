"""
Streamed update filtering / 流式更新去重

A streamed update is applied only when its text is non-blank and differs from
the last text applied to the same paragraph; later updates win.
"""

from typing import Dict, Iterable, List

from transloom.schemas.tools import ParagraphUpdate


def select_changed(updates: Iterable[ParagraphUpdate], last_applied: Dict[str, str]) -> List[ParagraphUpdate]:
    """
    筛选真正变化的更新，并记入 last_applied
    Return the updates that change something, recording them in ``last_applied``.

    Example:
        >>> last = {"p1": "Hello"}
        >>> [u.paragraph_id for u in select_changed([ParagraphUpdate(paragraph_id="p1", text="Hello"),
        ...                                          ParagraphUpdate(paragraph_id="p2", text="World")], last)]
        ['p2']
    """
    changed: List[ParagraphUpdate] = []
    for update in updates:
        if not update.text or not update.text.strip():
            continue
        if last_applied.get(update.paragraph_id) == update.text:
            continue
        last_applied[update.paragraph_id] = update.text
        changed.append(update)
    return changed
