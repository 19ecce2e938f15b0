from models.app_config import AppConfig
from models.audit_log import AuditLog
from models.medication_order import MedicationOrder, MedicationPriority, OrderStatus
from models.dose_schedule import DoseSchedule, ScheduleStatus
from models.administration_event import AdministrationEvent, AdministrationKind
from models.stock_entry import StockEntry
from models.stock_movement import StockMovement, MovementKind
from models.usage_history import UsageHistoryEntry, UsageStatus

__all__ = ['AdministrationEvent', 'AdministrationKind', 'AppConfig', 'AuditLog', 'DoseSchedule', 'MedicationOrder', 'MedicationPriority', 'MovementKind', 'OrderStatus', 'ScheduleStatus', 'StockEntry', 'StockMovement', 'UsageHistoryEntry', 'UsageStatus',]
