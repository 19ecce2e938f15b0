from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

import config as settings
from database import get_db
from schemas.app_config import AppConfigCreate, AppConfigUpdate, AppConfigOut, ReminderSettings
from crud import app_config as crud_app_config
from models.app_config import AppConfig as AppConfigModel
from utils.tenancy import get_tenant_id

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/configurations/", response_model=AppConfigOut)
def create_config(
    config: AppConfigCreate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    return crud_app_config.create_config(db, config, tenant_id, user_id=x_user_id)


@router.get("/configurations/", response_model=List[AppConfigOut])
def get_configs(name: Optional[str] = None, db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    configs = crud_app_config.get_config(db, tenant_id, name=name)
    # Always return a list, even if empty
    return [configs] if name and configs else configs or []


@router.patch("/configurations/{name}/", response_model=AppConfigOut)
def update_config(
    name: str,
    config: AppConfigUpdate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    updated = crud_app_config.update_config_by_name(db, name, config, tenant_id, user_id=x_user_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Configuration not found")
    return updated


@router.get("/configurations/effective/day-parts")
def get_effective_day_parts(db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    """Clock time each day-part resolves to for this school."""
    return crud_app_config.get_day_part_times(db, tenant_id)


@router.get("/configurations/effective/reminders", response_model=ReminderSettings)
def get_effective_reminder_settings(db: Session = Depends(get_db), tenant_id: str = Depends(get_tenant_id)):
    return crud_app_config.get_reminder_settings(db, tenant_id)


DEFAULT_CONFIGS = [
    {"name": f"{crud_app_config.DAY_PART_PREFIX}{part}", "value": clock}
    for part, clock in settings.DEFAULT_DAY_PART_TIMES.items()
] + [
    {"name": "reminder.lead_minutes", "value": str(settings.REMINDER_LEAD_MINUTES)},
    {"name": "reminder.overdue_minutes", "value": str(settings.REMINDER_OVERDUE_MINUTES)},
    {"name": "reminder.max_count", "value": str(settings.REMINDER_MAX_COUNT)},
]


@router.get("/tenants/configs-initialized", tags=["Tenants"])
def are_tenant_configurations_initialized(tenant_id: str, db: Session = Depends(get_db)):
    """
    Checks if the default application configurations are initialized for a tenant.
    """
    default_config_names = {config["name"] for config in DEFAULT_CONFIGS}

    existing_configs_query = db.query(AppConfigModel.name).filter(
        AppConfigModel.tenant_id == tenant_id,
        AppConfigModel.name.in_(default_config_names)
    )
    existing_config_names = {name for (name,) in existing_configs_query}

    return {"configs_initialized": default_config_names.issubset(existing_config_names)}


@router.post("/tenants/initialize-configs", status_code=status.HTTP_201_CREATED, tags=["Tenants"])
def initialize_tenant_configurations(
    tenant_id: str,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """
    Writes the site defaults for day-part times and reminder windows as
    editable rows for a new school. Idempotent: existing rows are kept.
    """
    existing_configs_query = db.query(AppConfigModel.name).filter(AppConfigModel.tenant_id == tenant_id)
    existing_config_names = {name for (name,) in existing_configs_query}

    new_configs_created = []
    for config_data in DEFAULT_CONFIGS:
        if config_data["name"] not in existing_config_names:
            crud_app_config.create_config(db, AppConfigCreate(**config_data), tenant_id, user_id=x_user_id)
            new_configs_created.append(config_data["name"])

    if not new_configs_created:
        return {"message": f"All default configurations already exist for tenant '{tenant_id}'."}

    logger.info(f"Initialized default configs for tenant '{tenant_id}' by {x_user_id}. New configs: {new_configs_created}")
    return {"message": f"Successfully initialized default configurations for tenant '{tenant_id}'.", "new_configs": new_configs_created}
