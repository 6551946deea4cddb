"""
Stage row layouts.

Stages come in two shapes:

  Regular     one row per task, named or positional columns for category,
              task name, planned/actual dates, delay and status.
  Horizontal  one row per party (Column C), task categories laid out side by
              side in repeating 5-column blocks starting at Column F:
              task name | planned | actual | delay | status.
              Category names live in the header row (sheet row 5).

Both layouts answer the same questions for a given party: which rows belong
to it, how many of its tasks are done, and what the task records are.
"""

from fields import (
    clean_value,
    is_blank,
    is_completed_status,
    names_match,
    row_party,
    row_status,
    TASK_FIELDS,
)

HORIZONTAL_STAGES = [
    'Site Management',
    'CIVIL & FABRICATION',
    'SERVICES & Complete Stone Work',
]

HEADER_ROW_INDEX = 4        # sheet row 5
DATA_START_ROW_INDEX = 5    # sheet row 6
PARTY_COLUMN_KEY = 'col_2'  # Column C
CATEGORY_START_COLUMN = 5   # Column F
CATEGORY_BLOCK_WIDTH = 5
MAX_CATEGORY_COLUMN = 200
MAX_EMPTY_CATEGORY_SLOTS = 3
INVALID_CATEGORY_NAMES = {'-', 'N/A'}


def is_horizontal_stage(stage_name):
    """Fuzzy match (substring either way, case-insensitive) against known horizontal stages."""
    name = (stage_name or '').strip().lower()
    if not name:
        return False
    return any(
        known.lower() in name or name in known.lower()
        for known in HORIZONTAL_STAGES
    )


def layout_for(stage_name):
    return HORIZONTAL if is_horizontal_stage(stage_name) else REGULAR


def column_letter(index):
    """0 -> A, 25 -> Z, 26 -> AA."""
    result = ''
    num = index
    while num >= 0:
        result = chr(num % 26 + 65) + result
        num = num // 26 - 1
    return result


def _col(row, index):
    return row.get(f'col_{index}')


class RegularLayout:
    name = 'regular'

    def party_rows(self, rows, party_name):
        return [row for row in rows if names_match(row_party(row), party_name)]

    def completion(self, rows, party_name):
        """Return (total_tasks, completed_tasks, party_rows)."""
        matched = self.party_rows(rows, party_name)
        completed = sum(1 for row in matched if is_completed_status(row_status(row)))
        return len(matched), completed, matched

    def extract_tasks(self, rows, party_name):
        tasks = []
        for i, row in enumerate(self.party_rows(rows, party_name)):
            values = {
                field: clean_value(resolver.resolve(row))
                for field, resolver in TASK_FIELDS.items()
            }
            tasks.append({
                'id': i + 1,
                'draft_category': values['draft_category'] or 'General',
                'name': values['name'] or f'Task {i + 1}',
                'status': values['status'] or 'Pending',
                'planned_date': values['planned_date'],
                'actual_date': values['actual_date'],
                'delay': values['delay'] or '0',
            })
        return tasks

    def order_categories(self, groups):
        return sorted(groups)


class HorizontalLayout:
    name = 'horizontal'

    def party_rows(self, rows, party_name):
        """Return (row_index, row) pairs for the party, scanning from the first data row."""
        matched = []
        for ri in range(DATA_START_ROW_INDEX, len(rows)):
            row = rows[ri]
            if names_match(row.get(PARTY_COLUMN_KEY), party_name):
                matched.append((ri, row))
        return matched

    def completion(self, rows, party_name):
        total = 0
        completed = 0
        matched = self.party_rows(rows, party_name)
        for _, row in matched:
            for ci in range(CATEGORY_START_COLUMN, MAX_CATEGORY_COLUMN + 1, CATEGORY_BLOCK_WIDTH):
                task_name = clean_value(_col(row, ci))
                if task_name is None:
                    continue
                total += 1
                if is_completed_status(_col(row, ci + 4)):
                    completed += 1
        return total, completed, [row for _, row in matched]

    def discover_categories(self, rows):
        """
        Find category headers in the header row.

        Steps through the block columns left to right. An empty slot looks
        ahead over itself and the next two slots; three empties in a row end
        the search.
        """
        if len(rows) <= HEADER_ROW_INDEX:
            return []
        header = rows[HEADER_ROW_INDEX]
        categories = []
        step = CATEGORY_BLOCK_WIDTH
        for ci in range(CATEGORY_START_COLUMN, MAX_CATEGORY_COLUMN + 1, step):
            val = _col(header, ci)
            if not is_blank(val):
                name = str(val).strip()
                if len(name) > 1 and name not in INVALID_CATEGORY_NAMES:
                    categories.append({
                        'name': name,
                        'col_index': ci,
                        'key': f'col_{ci}',
                        'column': column_letter(ci),
                    })
                continue
            lookahead = range(ci, min(ci + step * MAX_EMPTY_CATEGORY_SLOTS, MAX_CATEGORY_COLUMN + 1), step)
            empty = sum(1 for c in lookahead if is_blank(_col(header, c)))
            if empty >= MAX_EMPTY_CATEGORY_SLOTS:
                break
        return categories

    def extract_tasks(self, rows, party_name):
        categories = self.discover_categories(rows)
        if not categories:
            return []
        tasks = []
        for pi, (_, row) in enumerate(self.party_rows(rows, party_name)):
            for cat_i, cat in enumerate(categories):
                ci = cat['col_index']
                name = clean_value(_col(row, ci))
                planned = clean_value(_col(row, ci + 1))
                actual = clean_value(_col(row, ci + 2))
                delay = clean_value(_col(row, ci + 3))
                status = clean_value(_col(row, ci + 4))
                if not name or not (planned or actual or status):
                    continue
                tasks.append({
                    'id': f'{pi}-{cat_i}',
                    'draft_category': cat['name'],
                    'name': name,
                    'status': status or 'Pending',
                    'planned_date': planned,
                    'actual_date': actual,
                    'delay': delay or '0',
                    'column_order': ci,
                })
        return tasks

    def order_categories(self, groups):
        """Column order of each group's first task; alphabetical when unknown."""
        def key(cat):
            first = groups[cat][0]
            order = first.get('column_order')
            return (order is None, order if order is not None else 0, cat)
        return sorted(groups, key=key)


REGULAR = RegularLayout()
HORIZONTAL = HorizontalLayout()
