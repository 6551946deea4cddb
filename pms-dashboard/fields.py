"""
Field extraction helpers for loosely-structured stage rows.

Rows come back from the script endpoint as plain mappings. Nothing about
their shape is guaranteed, so every field is located through an ordered
chain of rules:

  - a standardized key set by the script ("PartyName", "Status", ...)
  - alternate spellings of the sheet header ("Party Name", "PARTY NAME", ...)
  - a fixed column position (Column C = index 2, Column K = index 10, ...)

The first rule that yields a usable value wins.
"""

import re

# Accepted "done" markers (compared lowercased and trimmed)
COMPLETE_STATUSES = {
    'completed', 'done', 'finished', 'complete', '100%', 'yes', 'y',
}
# Some sheets mark completion with boolean-ish cells
COMPLETE_STATUSES_EXTENDED = COMPLETE_STATUSES | {'true', '1'}

# Cell values that mean "nothing here"
EMPTY_MARKERS = {'', '-', 'null'}

PARTY_HEADER_LABEL = 'party name'
DATE_PATTERN = re.compile(r'^\d{1,2}/\d{1,2}/\d{4}')

PARTY_HEADERS = ['Party Name', 'party', 'Party', 'PARTY NAME', 'party_name']
# The stage-data scan also sees raw sheet headers
PARTY_HEADERS_SCAN = [
    'Party Name', 'party', 'Party', 'PARTY NAME', 'PartyName', 'party_name', 'Party_Name',
]


def clean_value(val):
    """Return the trimmed string form of a cell, or None for blank-ish cells."""
    if val is None:
        return None
    s = str(val).strip()
    if s.lower() in EMPTY_MARKERS:
        return None
    return s


def is_blank(val):
    """True for missing cells and cells holding only whitespace."""
    return val is None or str(val).strip() == ''


def normalize_status(val):
    if val is None:
        return ''
    return str(val).strip().lower()


def is_completed_status(val, extended=False):
    """
    Classify a status cell as complete.

    Matching is case- and whitespace-insensitive. With ``extended`` the
    boolean-ish markers "true" and "1" are accepted too.
    """
    accepted = COMPLETE_STATUSES_EXTENDED if extended else COMPLETE_STATUSES
    return normalize_status(val) in accepted


def is_complete(total, completed):
    """A stage is complete only when it has tasks and all of them are done."""
    return total > 0 and total == completed


def names_match(a, b):
    """Case- and trim-insensitive party name comparison."""
    if a is None or b is None:
        return False
    return str(a).strip().casefold() == str(b).strip().casefold()


def looks_like_date(val):
    return bool(DATE_PATTERN.match(str(val).strip()))


def is_header_label(val):
    """Detect the literal "Party Name" header leaking into data rows."""
    s = str(val).strip()
    return s.lower() == PARTY_HEADER_LABEL or 'Party Name' in s


def column_value(row, index):
    """Value at a column position, counting keys in row order."""
    values = list(row.values())
    if index < len(values):
        return values[index]
    return None


def _truthy(val):
    """Mirror of a sheet cell being "filled": None, '' and 0 are not."""
    if val is None or val is False:
        return False
    if isinstance(val, str):
        return val != ''
    if isinstance(val, (int, float)):
        return val != 0
    return True


class FieldResolver:
    """
    First-matching-rule resolver for one logical field.

    Rules are tried in order. A key rule looks the value up by name, an
    index rule by column position. A rule matches when the value is filled
    and ``accept`` (if given) agrees.
    """

    def __init__(self, keys=(), index=None, accept=None, rules=None):
        if rules is None:
            rules = [('key', k) for k in keys]
            if index is not None:
                rules.append(('index', index))
        self.rules = list(rules)
        self.accept = accept

    def _lookup(self, row, rule):
        kind, arg = rule
        if kind == 'key':
            return row.get(arg)
        if kind == 'index':
            return column_value(row, arg)
        raise ValueError(f"Unknown rule kind: {kind!r}")

    def matching_rule(self, row):
        """Return (rule, value) for the first matching rule, or (None, None)."""
        for rule in self.rules:
            val = self._lookup(row, rule)
            if not _truthy(val):
                continue
            if self.accept is not None and not self.accept(val):
                continue
            return rule, val
        return None, None

    def resolve(self, row, default=None):
        _, val = self.matching_rule(row)
        return default if val is None else val


def _scan_column_candidate(val):
    return (
        isinstance(val, str)
        and val.strip() != ''
        and not is_header_label(val)
        and not looks_like_date(val)
    )


def _scan_header_candidate(val):
    return (
        isinstance(val, str)
        and val.strip() != ''
        and val.strip().lower() != PARTY_HEADER_LABEL
    )


# Party column while filtering a stage's rows
PARTY_FIELD = FieldResolver(keys=['PartyName'] + PARTY_HEADERS, index=2)

# Party column while scanning every stage for distinct names: the column
# position is trusted first, header spellings only when it is unusable.
PARTY_SCAN_COLUMN = FieldResolver(index=2, accept=_scan_column_candidate)
PARTY_SCAN_HEADERS = FieldResolver(keys=PARTY_HEADERS_SCAN, accept=_scan_header_candidate)

STATUS_FIELD = FieldResolver(keys=['Status', 'Azure Status', 'status'], index=10)

TASK_FIELDS = {
    'draft_category': FieldResolver(keys=['DraftCategory', 'Draft Category'], index=5),
    'name': FieldResolver(keys=['DraftName', 'Draft Name'], index=6),
    'planned_date': FieldResolver(keys=['Planned'], index=7),
    'actual_date': FieldResolver(keys=['Actual'], index=8),
    'delay': FieldResolver(keys=['Delay'], index=9),
    'status': FieldResolver(keys=['Status', 'Azure Status'], index=10),
}


def scan_party_name(row):
    """
    Extract a party name from a raw sheet row, or None.

    Used when deriving the party list from every stage's raw rows, where
    header rows, dates and blank cells all show up in the party column.
    """
    val = PARTY_SCAN_COLUMN.resolve(row)
    if val is None:
        val = PARTY_SCAN_HEADERS.resolve(row)
    if val is None:
        return None
    name = str(val).strip()
    if not name or name.lower() == PARTY_HEADER_LABEL or looks_like_date(name):
        return None
    return name


def row_party(row):
    return PARTY_FIELD.resolve(row)


def row_status(row):
    return STATUS_FIELD.resolve(row)
