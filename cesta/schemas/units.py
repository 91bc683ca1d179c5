from enum import Enum


class SourceName(str, Enum):
    PREZUNIC = "prezunic"
    ZONASUL = "zonasul"
    EXTRA = "extra"
    SUPERMARKETDELIVERY = "supermarketdelivery"


class Unit(str, Enum):
    UN = "un"
    G = "g"
    KG = "kg"
    ML = "ml"
    L = "l"
