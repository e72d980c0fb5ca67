"""
Repository-level validation helpers that inspect SQLAlchemy mapped classes.

These run before a write so callers get a precise `InvalidFieldError` or
"missing required field" error instead of an opaque database exception.
"""
from sqlalchemy import and_, select, UniqueConstraint
from sqlalchemy import inspect as sa_inspect


def find_unknown_model_kwargs(model, kwargs: dict) -> list[str]:
    """
    Return the keys of `kwargs` that are not mapped attributes of `model`.
    """
    allowed = {attr.key for attr in sa_inspect(model).attrs}
    return [k for k in kwargs if k not in allowed]


def get_required_columns(model) -> list[str]:
    """
    NOT NULL columns that have neither a client nor a server default and are
    not autoincrement primary keys.
    """
    required = []
    for col in model.__table__.columns:
        has_default = col.default is not None or col.server_default is not None
        is_auto_pk = col.primary_key and col.autoincrement is True
        if not col.nullable and not has_default and not is_auto_pk:
            required.append(col.name)
    return required


def get_unique_column_sets(model) -> list[list[str]]:
    """
    Unique column groups declared on the table: `unique=True` columns,
    `UniqueConstraint`s and unique indexes.
    """
    table = model.__table__
    sets = [[col.name] for col in table.columns if col.unique]
    sets += [
        [c.name for c in constraint.columns]
        for constraint in table.constraints
        if isinstance(constraint, UniqueConstraint)
    ]
    sets += [[c.name for c in idx.columns] for idx in table.indexes if idx.unique]
    return sets


async def find_unique_conflicts(db, model, kwargs: dict) -> set[str]:
    """
    Best-effort pre-insert check for rows that would violate a unique constraint.

    Only groups whose columns are all present in `kwargs` are checked.
    Returns the conflicting column names.
    """
    conflicts: set[str] = set()
    for cols in get_unique_column_sets(model):
        if not all(c in kwargs for c in cols):
            continue
        conditions = [getattr(model, c) == kwargs[c] for c in cols]
        result = await db.execute(select(model).where(and_(*conditions)).limit(1))
        if result.scalars().first() is not None:
            conflicts.update(cols)
    return conflicts
