import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Universal destination type for anything we cannot map
FALLBACK_TYPE = 'NVARCHAR(MAX)'

# SQL Server limits used when a catalog size is carried over
MAX_DECIMAL_PRECISION = 38
MAX_NVARCHAR_LENGTH = 4000
MAX_CHAR_LENGTH = 8000


class TypeMapper:
    # PostgreSQL information_schema data_type -> SQL Server type literal
    SOURCE_TO_TARGET: Dict[str, str] = {
        'bigint': 'BIGINT',
        'boolean': 'BIT',
        'character': 'CHAR',
        'character varying': 'NVARCHAR(MAX)',
        'date': 'DATE',
        'double precision': 'FLOAT',
        'integer': 'INT',
        'interval': 'TIME',  # lossy: only sub-day intervals survive
        'numeric': 'DECIMAL',
        'real': 'REAL',
        'smallint': 'SMALLINT',
        'text': 'NVARCHAR(MAX)',
        'time': 'TIME',
        'time without time zone': 'TIME',
        'timestamp': 'DATETIME2',
        'timestamptz': 'DATETIMEOFFSET',
        'uuid': 'UNIQUEIDENTIFIER',
        'bytea': 'VARBINARY(MAX)',
        'bit': 'BIT',
        'bit varying': 'VARBINARY(MAX)',
        'money': 'MONEY',
        'json': 'NVARCHAR(MAX)',
        'jsonb': 'NVARCHAR(MAX)',
        'cidr': 'NVARCHAR(MAX)',
        'inet': 'NVARCHAR(MAX)',
        'macaddr': 'NVARCHAR(MAX)',
        'tsvector': 'NVARCHAR(MAX)',
        'tsquery': 'NVARCHAR(MAX)',
        'array': 'NVARCHAR(MAX)',
        'domain': 'NVARCHAR(MAX)',
        'timestamp with time zone': 'DATETIMEOFFSET',
        'timestamp without time zone': 'DATETIME2',
    }

    @staticmethod
    def _normalize(source_type: Optional[str]) -> str:
        return ' '.join((source_type or '').lower().split())

    @staticmethod
    def is_mapped(source_type: Optional[str]) -> bool:
        return TypeMapper._normalize(source_type) in TypeMapper.SOURCE_TO_TARGET

    @staticmethod
    def map(source_type: Optional[str]) -> str:
        """Map a source type name to a destination literal, falling back to NVARCHAR(MAX)"""
        return TypeMapper.SOURCE_TO_TARGET.get(TypeMapper._normalize(source_type), FALLBACK_TYPE)

    @staticmethod
    def map_column(column) -> str:
        """Map a ColumnDescriptor, carrying over length/precision where the destination allows it"""
        base_type = TypeMapper.map(column.source_type)

        if base_type == 'DECIMAL' and column.numeric_precision:
            if column.numeric_precision <= MAX_DECIMAL_PRECISION:
                if column.numeric_scale:
                    return f"DECIMAL({column.numeric_precision},{column.numeric_scale})"
                return f"DECIMAL({column.numeric_precision})"
            logger.warning(
                f"Column {column.name}: precision {column.numeric_precision} exceeds "
                f"{MAX_DECIMAL_PRECISION}, using {base_type}"
            )
        elif TypeMapper._normalize(column.source_type) == 'character varying' and column.max_length:
            if 0 < column.max_length <= MAX_NVARCHAR_LENGTH:
                return f"NVARCHAR({column.max_length})"
        elif base_type == 'CHAR' and column.max_length:
            if 0 < column.max_length <= MAX_CHAR_LENGTH:
                return f"CHAR({column.max_length})"

        return base_type
