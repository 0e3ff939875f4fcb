"""Case-insensitive shell-style wildcard matching for email addresses."""

from __future__ import annotations


def glob_match(pattern: str, text: str) -> bool:
    """Return ``True`` when ``text`` matches ``pattern``.

    ``*`` matches any run of characters (including none) and ``?`` exactly
    one. There are no character classes or escapes, so ``[`` and ``\\``
    match themselves, unlike :mod:`fnmatch`.
    """
    pattern = pattern.lower()
    text = text.lower()

    p_idx = 0
    t_idx = 0
    star_p = -1
    star_t = 0

    while t_idx < len(text):
        if p_idx < len(pattern) and pattern[p_idx] in ("?", text[t_idx]):
            p_idx += 1
            t_idx += 1
        elif p_idx < len(pattern) and pattern[p_idx] == "*":
            star_p = p_idx
            star_t = t_idx
            p_idx += 1
        elif star_p != -1:
            # Let the last star absorb one more character and retry.
            p_idx = star_p + 1
            star_t += 1
            t_idx = star_t
        else:
            return False

    while p_idx < len(pattern) and pattern[p_idx] == "*":
        p_idx += 1

    return p_idx == len(pattern)


__all__ = ["glob_match"]
