"""
Parsing package for the US Census metadata loader.

Exports the field decoders shared by the record models. The document parsers
live in `us_census.parsing.collections`, which depends on the models and is
therefore not imported here.
"""

from us_census.parsing.decoders import (
    COMMA_SPLITTER,
    LABEL_SPLITTER,
    DelimitedSplitter,
    decode_limit,
    decode_reference_date,
    decode_wildcard,
    split_comma_separated,
    split_label,
)

__all__ = [
    "COMMA_SPLITTER",
    "LABEL_SPLITTER",
    "DelimitedSplitter",
    "decode_limit",
    "decode_reference_date",
    "decode_wildcard",
    "split_comma_separated",
    "split_label",
]
