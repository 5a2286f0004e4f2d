"""Entity mapping and object-graph loading over SQLAlchemy Core.

sqla_entities maps classes declared with ``Property``, ``ManyToOne``,
``OneToMany`` and ``ManyToMany`` fields onto plain tables. Build a ``Criteria``
from the expression functions (``equal``, ``between``, ``contains``...), then
call ``load_list`` to get entities with their references, child lists and
associative links already attached. Sub-entities extend a parent row sharing its
id and are loaded and saved together with it.
"""

from ._version import __version__, __version_tuple__
from .associative import Linker
from .config import Settings, get_settings, init_settings, load_config
from .criteria import Criteria
from .database import Database, Transaction, close_database, get_database, init_database
from .datastructures import frozendict
from .errors import (
    AmbiguousResultError,
    ConfigurationError,
    ConstraintError,
    DatabaseConnectionError,
    EntityError,
    QueryExecutionError,
    ValidationError,
)
from .expression import (
    Expression,
    above,
    after,
    after_now,
    any_of,
    between,
    contains,
    ends_with,
    equal,
    is_not_in,
    starts_with,
)
from .joins import JoinKind, JoinTable, join_table
from .loader import EntityLoader
from .metadata import (
    AssociativeEntity,
    Entity,
    EntityType,
    Identifier,
    ManyToMany,
    ManyToOne,
    OneToMany,
    Property,
    StrongEntity,
    SubEntity,
)
from .persistence import EntityWriter
from .properties import PropertyType, create, sanitize, to_string
from .session import Session
from .tools import entities_cache_clear, entity_type_of, get_id_column, get_table_name


__all__ = (
    "AmbiguousResultError",
    "AssociativeEntity",
    "ConfigurationError",
    "ConstraintError",
    "Criteria",
    "Database",
    "DatabaseConnectionError",
    "Entity",
    "EntityError",
    "EntityLoader",
    "EntityType",
    "EntityWriter",
    "Expression",
    "Identifier",
    "JoinKind",
    "JoinTable",
    "Linker",
    "ManyToMany",
    "ManyToOne",
    "OneToMany",
    "Property",
    "PropertyType",
    "QueryExecutionError",
    "Session",
    "Settings",
    "StrongEntity",
    "SubEntity",
    "Transaction",
    "ValidationError",
    "__version__",
    "__version_tuple__",
    "above",
    "after",
    "after_now",
    "any_of",
    "between",
    "close_database",
    "contains",
    "create",
    "ends_with",
    "entities_cache_clear",
    "entity_type_of",
    "equal",
    "frozendict",
    "get_database",
    "get_id_column",
    "get_settings",
    "get_table_name",
    "init_database",
    "init_settings",
    "is_not_in",
    "join_table",
    "load_config",
    "sanitize",
    "starts_with",
    "to_string",
)
