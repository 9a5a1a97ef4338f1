"""
Constantes del motor de sincronizacion POS.
Define estados de jobs/checkpoints, canales y tipos de dato de los cursores.
"""
from enum import Enum


class JobStatus(str, Enum):
    """Estados de un job de sync historico."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CheckpointStatus(str, Enum):
    """Estados de un checkpoint (una locacion dentro de un job)."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderOperation(str, Enum):
    """Resultado del upsert atomico de una orden."""
    CREATED = "created"
    UPDATED = "updated"


# Estados reclamables por el worker
CLAIMABLE_CHECKPOINT_STATUSES = (CheckpointStatus.PENDING.value, CheckpointStatus.RETRY.value)
OPEN_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.ACTIVE.value)

# Canal y sistema upstream
POS_CHANNEL = "clover"
POS_SYSTEM = "pos"

# Tipos de dato de los cursores
DATA_TYPE_ORDERS = "orders"

HISTORICAL_JOB_TYPE = "pos_historical"

# Colecciones expandidas al listar ordenes
ORDER_EXPAND = "lineItems,payments,discounts,refunds"
ORDER_BY_MODIFIED_ASC = "modifiedTime ASC"

# Clave de error de un merchant cuyo sync fallo por completo
MERCHANT_ERROR_KEY = "MERCHANT_ERROR"

# Defaults de merchants creados por primera vez
DEFAULT_MERCHANT_COUNTRY = "US"
DEFAULT_MERCHANT_TIMEZONE = "America/Chicago"
DEFAULT_MERCHANT_CURRENCY = "USD"
