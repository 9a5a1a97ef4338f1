"""
DTOs de la capa de aplicacion.
"""
from possync.application.dto.sync_dto import (
    HistoricalSyncRequestDTO,
    HistoricalSyncResponseDTO,
    JobStatusDTO,
    JobSummaryDTO,
    SyncResultDTO,
    SchedulerStatusDTO,
)

__all__ = [
    "HistoricalSyncRequestDTO",
    "HistoricalSyncResponseDTO",
    "JobStatusDTO",
    "JobSummaryDTO",
    "SyncResultDTO",
    "SchedulerStatusDTO",
]
