"""Splits out-of-band ``<...>`` commands from assistant text."""

from typing import NamedTuple


class ExtractedText(NamedTuple):
    text: str
    commands: list[str]


def extract_commands(text: str) -> ExtractedText:
    """Single left-to-right scan; commands are not nested and not validated.

    A ``<`` opens a command and the next ``>`` closes it. A ``<`` inside an
    open command is ordinary content. An unterminated trailing command is
    emitted with a closing ``>`` added.
    """
    cleaned: list[str] = []
    commands: list[str] = []
    buffer: list[str] = []
    in_command = False

    for ch in text:
        if not in_command and ch == "<":
            in_command = True
            buffer = ["<"]
        elif in_command and ch == ">":
            buffer.append(">")
            commands.append("".join(buffer))
            in_command = False
            buffer = []
        elif in_command:
            buffer.append(ch)
        else:
            cleaned.append(ch)

    if in_command and buffer:
        commands.append("".join(buffer) + ">")

    return ExtractedText(text="".join(cleaned), commands=commands)
