"""Colour pair identifiers used by the terminal interface."""

from enum import IntEnum

#: Colour value meaning "terminal default"
COLOR_DEFAULT = -1


class ColorPair(IntEnum):
    """Available colour pairs, numbered in declaration order."""

    DEFAULT = 0
    CYAN_ON_DEF = 1
    YELLOW_ON_DEF = 2
    MAGENTA_ON_DEF = 3
    GREEN_ON_DEF = 4
    RED_ON_DEF = 5
    BLUE_ON_DEF = 6
    WHITE_ON_DEF = 7
    DEF_ON_CYAN = 8
    DEF_ON_BLUE = 9
    WHITE_ON_BLUE = 10
    BLACK_ON_CYAN = 11
    WHITE_ON_CYAN = 12
    YELLOW_ON_CYAN = 13
    BLUE_ON_CYAN = 14
    BLUE_ON_WHITE = 15
    CYAN_ON_BLACK = 16
    CYAN_ON_WHITE = 17