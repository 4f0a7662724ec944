"""Endpoints de módulos, zonas y salud de dispositivos.

Las escrituras que pasan por la base o el broker responden 500 con un mensaje
genérico si fallan; la causa sólo queda en el log.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from ..mqtt.config_publisher import ConfigPublishError
from ..pipeline import TelemetryPipeline
from ..schemas import (
    CommandResult,
    HardwareEnableIn,
    ModuleConfigIn,
    ModuleConfigResult,
    ModuleList,
    ModuleRenameIn,
    ModuleSummary,
    PreferencesResult,
    SensorResetIn,
    ZoneAssignIn,
    ZoneIn,
)
from .deps import get_pipeline

router = APIRouter(tags=["modules"])
logger = logging.getLogger(__name__)


def _device_repository(pipeline: TelemetryPipeline):
    if pipeline.device_repository is None:
        raise HTTPException(status_code=503, detail="Device store not configured")
    return pipeline.device_repository


def _require_module(pipeline: TelemetryPipeline, module_id: str):
    info = pipeline.repository.get_module_info(module_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Module not found")
    return info


# ==========================================================================
# Listing and status
# ==========================================================================

@router.get("/modules", response_model=ModuleList)
def list_modules(pipeline: TelemetryPipeline = Depends(get_pipeline)):
    modules = []
    for module_id in pipeline.repository.list_module_ids():
        info = pipeline.repository.get_module_info(module_id)
        modules.append(ModuleSummary(
            id=module_id,
            name=info.name if info else None,
            type=info.module_type if info else None,
            zone_id=info.zone_id if info else None,
        ))
    return ModuleList(modules=modules)


@router.get("/modules/{module_id}/status")
def module_status(module_id: str, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    info = _require_module(pipeline, module_id)
    configs = pipeline.repository.get_sensor_configs(module_id, enabled_only=False)
    return {
        "moduleId": module_id,
        "name": info.name,
        "type": info.module_type,
        "zoneId": info.zone_id,
        "system": {
            "ip": info.ip,
            "mac": info.mac,
            "bootedAt": info.booted_at.isoformat() if info.booted_at else None,
            "rssi": info.rssi,
            "flash": {
                "usedKb": info.flash_used_kb,
                "freeKb": info.flash_free_kb,
                "systemKb": info.flash_system_kb,
            },
            "memory": {
                "heapTotalKb": info.heap_total_kb,
                "heapFreeKb": info.heap_free_kb,
                "heapMinFreeKb": info.heap_min_free_kb,
            },
            "updatedAt": info.updated_at.isoformat() if info.updated_at else None,
        },
        "sensors": [s.to_dict() for s in pipeline.health_service.get_sensor_statuses(module_id)],
        "config": {
            c.sensor_type: {"interval": c.interval_seconds, "model": c.model, "enabled": c.enabled}
            for c in configs
        },
        "preferences": info.preferences,
    }


@router.get("/modules/{module_id}/health")
def module_health(
    module_id: str,
    hours: float = Query(default=24, gt=0, le=24 * 30),
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    _require_module(pipeline, module_id)
    return pipeline.health_service.get_device_health(module_id, hours).to_dict()


@router.get("/modules/{module_id}/gaps")
def module_gaps(
    module_id: str,
    hours: float = Query(default=24, gt=0, le=24 * 30),
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    _require_module(pipeline, module_id)
    gaps = []
    for config in pipeline.repository.get_sensor_configs(module_id):
        gaps.extend(pipeline.health_service.detect_gaps(module_id, config.sensor_type, hours, config=config))
    return {"moduleId": module_id, "hours": hours, "gaps": [g.to_dict() for g in gaps]}


@router.get("/health/unhealthy")
def unhealthy_modules(pipeline: TelemetryPipeline = Depends(get_pipeline)):
    return {"modules": pipeline.health_service.get_unhealthy_devices()}


@router.get("/gaps/stats")
def gap_stats(
    hours: float = Query(default=24, gt=0, le=24 * 30),
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    return pipeline.health_service.get_gap_stats(hours)


# ==========================================================================
# Commands to the module
# ==========================================================================

@router.put("/modules/{module_id}/config", response_model=ModuleConfigResult)
def update_config(
    module_id: str,
    payload: ModuleConfigIn,
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    intervals = {key: cfg.interval for key, cfg in payload.sensors.items()}
    models = {key: cfg.model for key, cfg in payload.sensors.items()}
    if not intervals:
        raise HTTPException(status_code=400, detail="No sensor intervals given")
    try:
        published = pipeline.config_publisher.apply_user_config(module_id, intervals, models)
    except ConfigPublishError:
        raise HTTPException(status_code=500, detail="Failed to update module configuration")
    return ModuleConfigResult(success=True, published=published)


@router.post("/modules/{module_id}/reset", response_model=CommandResult)
def reset_sensor(
    module_id: str,
    payload: SensorResetIn,
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    module_type = pipeline.repository.get_module_type(module_id)
    manifest = pipeline.registry.get_manifest(module_type)
    if manifest is not None and manifest.get_hardware(payload.sensor) is None:
        raise HTTPException(status_code=400, detail=f"Unknown hardware for {module_type}: {payload.sensor}")
    if not pipeline.config_publisher.publish_reset(module_id, payload.sensor):
        raise HTTPException(status_code=500, detail="Failed to send reset command")
    return CommandResult(success=True, message=f"Reset command sent for {payload.sensor}")


@router.post("/modules/{module_id}/enable", response_model=CommandResult)
def enable_hardware(
    module_id: str,
    payload: HardwareEnableIn,
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    try:
        pipeline.config_publisher.set_enabled(module_id, payload.hardware, payload.enabled)
    except ConfigPublishError:
        raise HTTPException(status_code=500, detail="Failed to update hardware state")
    state = "enabled" if payload.enabled else "disabled"
    return CommandResult(success=True, message=f"{payload.hardware} {state}")


# ==========================================================================
# Module metadata and lifecycle
# ==========================================================================

@router.patch("/modules/{module_id}/preferences", response_model=PreferencesResult)
def update_preferences(
    module_id: str,
    changes: Dict[str, Any] = Body(...),
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    devices = _device_repository(pipeline)
    try:
        merged = devices.update_preferences(module_id, changes)
    except Exception as e:
        logger.error("[DB] Failed to update preferences for %s: %s", module_id, e)
        raise HTTPException(status_code=500, detail="Failed to update preferences")
    if merged is None:
        raise HTTPException(status_code=404, detail="Module not found")
    return PreferencesResult(success=True, message="Preferences updated", preferences=merged)


@router.patch("/modules/{module_id}", response_model=CommandResult)
def rename_module(
    module_id: str,
    payload: ModuleRenameIn,
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    if not _device_repository(pipeline).rename_module(module_id, payload.name):
        raise HTTPException(status_code=404, detail="Module not found")
    return CommandResult(success=True, message="Module renamed")


@router.put("/modules/{module_id}/zone", response_model=CommandResult)
def assign_zone(
    module_id: str,
    payload: ZoneAssignIn,
    pipeline: TelemetryPipeline = Depends(get_pipeline),
):
    try:
        assigned = _device_repository(pipeline).assign_zone(module_id, payload.zone_id)
    except Exception as e:
        logger.error("[DB] Failed to assign %s to zone %s: %s", module_id, payload.zone_id, e)
        raise HTTPException(status_code=500, detail="Failed to assign zone")
    if not assigned:
        raise HTTPException(status_code=404, detail="Module not found")
    return CommandResult(success=True, message="Zone assigned")


@router.delete("/modules/{module_id}/zone", response_model=CommandResult)
def remove_from_zone(module_id: str, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    if not _device_repository(pipeline).remove_from_zone(module_id):
        raise HTTPException(status_code=404, detail="Module not found")
    return CommandResult(success=True, message="Module removed from zone")


@router.delete("/modules/{module_id}", response_model=CommandResult)
def delete_module(module_id: str, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    try:
        deleted = pipeline.repository.delete_module(module_id)
    except Exception as e:
        logger.error("[DB] Failed to delete module %s: %s", module_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete module")
    if not deleted:
        raise HTTPException(status_code=404, detail="Module not found")
    logger.info("[API] Module %s deleted", module_id)
    return CommandResult(success=True, message=f"Module {module_id} deleted")


@router.post("/zones", status_code=201)
def create_zone(payload: ZoneIn, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    zone_id = _device_repository(pipeline).create_zone(payload.name, payload.description)
    return {"id": zone_id, "name": payload.name, "description": payload.description}


@router.delete("/zones/{zone_id}", response_model=CommandResult)
def delete_zone(zone_id: str, pipeline: TelemetryPipeline = Depends(get_pipeline)):
    if not _device_repository(pipeline).delete_zone(zone_id):
        raise HTTPException(status_code=404, detail="Zone not found")
    return CommandResult(success=True, message="Zone deleted")
