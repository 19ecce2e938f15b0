from sqlalchemy.orm import Session
from models.app_config import AppConfig
from schemas.app_config import AppConfigCreate, AppConfigUpdate, ReminderSettings
import datetime
import logging
import pytz

import config as settings
from config import SITE_TIMEZONE

# Audit imports
from crud.audit_log import create_audit_log
from schemas.audit_log import AuditLogCreate
from utils import sqlalchemy_to_dict

logger = logging.getLogger(__name__)

DAY_PART_PREFIX = "day_part."


# Create a new config entry
def create_config(db: Session, config: AppConfigCreate, tenant_id: str, user_id: str):
    db_config = AppConfig(
        name=config.name,
        value=config.value,
        description=config.description,
        tenant_id=tenant_id,
        created_by=user_id,
    )
    db.add(db_config)
    db.flush()

    create_audit_log(db, AuditLogCreate(
        table_name='app_config',
        record_id=db_config.id,
        changed_by=user_id or "SYSTEM",
        action='CREATE',
        old_values={},
        new_values=sqlalchemy_to_dict(db_config),
    ))
    db.commit()
    db.refresh(db_config)
    return db_config


# Get config by name (or all configs)
def get_config(db: Session, tenant_id: str, name: str = None):
    if name:
        return db.query(AppConfig).filter(AppConfig.name == name, AppConfig.tenant_id == tenant_id).first()
    return db.query(AppConfig).filter(AppConfig.tenant_id == tenant_id).order_by(AppConfig.name).all()


# Update config by name
def update_config_by_name(db: Session, name: str, config: AppConfigUpdate, tenant_id: str, user_id: str = None):
    db_config = db.query(AppConfig).filter(AppConfig.name == name, AppConfig.tenant_id == tenant_id).first()
    if not db_config:
        return None

    old_values = sqlalchemy_to_dict(db_config)
    for field, value in config.model_dump(exclude_unset=True).items():
        setattr(db_config, field, value)
    db_config.updated_at = datetime.datetime.now(pytz.timezone(SITE_TIMEZONE))
    db_config.updated_by = user_id

    create_audit_log(db, AuditLogCreate(
        table_name='app_config',
        record_id=db_config.id,
        changed_by=user_id or "SYSTEM",
        action='UPDATE',
        old_values=old_values,
        new_values=sqlalchemy_to_dict(db_config),
    ))
    db.commit()
    db.refresh(db_config)
    return db_config


def _int_setting(configs: dict, name: str, default: int) -> int:
    raw = configs.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value '{raw}' for config '{name}'")
        return default


def get_day_part_times(db: Session, tenant_id: str) -> dict:
    """Default clock time per day-part, with the school's overrides applied."""
    times = dict(settings.DEFAULT_DAY_PART_TIMES)
    overrides = db.query(AppConfig).filter(
        AppConfig.tenant_id == tenant_id,
        AppConfig.name.startswith(DAY_PART_PREFIX),
    ).all()
    for override in overrides:
        times[override.name[len(DAY_PART_PREFIX):]] = override.value
    return times


def get_reminder_settings(db: Session, tenant_id: str) -> ReminderSettings:
    configs = {
        c.name: c.value
        for c in db.query(AppConfig).filter(
            AppConfig.tenant_id == tenant_id,
            AppConfig.name.startswith("reminder."),
        )
    }
    return ReminderSettings(
        lead_minutes=_int_setting(configs, "reminder.lead_minutes", settings.REMINDER_LEAD_MINUTES),
        overdue_minutes=_int_setting(configs, "reminder.overdue_minutes", settings.REMINDER_OVERDUE_MINUTES),
        max_reminders=_int_setting(configs, "reminder.max_count", settings.REMINDER_MAX_COUNT),
    )
