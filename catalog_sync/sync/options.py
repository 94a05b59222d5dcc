# catalog_sync/sync/options.py
# Run options for one sync. Legacy option bags are migrated at the boundary so the
# engine only ever sees the canonical fields.
from __future__ import annotations

from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel, to_snake

OPTIONS_VERSION = 2


class SyncOptions(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    version: int = OPTIONS_VERSION
    delete_missing: bool = False
    do_create_new: bool = True
    do_update_existing: bool = True
    update_stock_only: bool = False
    update_stock_and_price_only: bool = False
    update_images_on_update: bool = True
    profit_margin_percent: float = Field(default=0, allow_inf_nan=False)
    apply_margin_on: Literal["regular", "sale", "both"] = "regular"
    round_to_integer: bool = True
    media_mode: Literal["upload", "prefer_existing_by_filename", "none"] = "prefer_existing_by_filename"
    limit: Optional[int] = Field(default=None, ge=0)
    per_item_delay_ms: int = Field(default=0, ge=0)
    process_direction: Literal["asc", "desc"] = "asc"

    @field_validator("process_direction", "apply_margin_on", "media_mode", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("limit", mode="before")
    @classmethod
    def _blank_limit(cls, v: Any) -> Any:
        # form posts send "" for "no limit"
        if v == "" or v == 0:
            return None
        return v

    @property
    def narrowing(self) -> bool:
        """Stock-only or stock+price-only: such runs never create products."""
        return self.update_stock_only or self.update_stock_and_price_only

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def migrate_options(raw: Optional[Mapping[str, Any]] = None) -> SyncOptions:
    """
    Normalize any option bag (camelCase or snake_case, current or legacy) into SyncOptions.

    Legacy `onlyCreateNew`:
      true  -> doCreateNew=true, doUpdateExisting=false, deleteMissing=false
      false -> doUpdateExisting=true unless given explicitly
    """
    if isinstance(raw, SyncOptions):
        return raw
    data: Dict[str, Any] = {}
    for key, value in (raw or {}).items():
        if value is None:
            continue
        data[to_snake(str(key))] = value

    legacy = data.pop("only_create_new", None)
    if legacy is not None:
        if _truthy(legacy):
            data["do_create_new"] = True
            data["do_update_existing"] = False
            data["delete_missing"] = False
        else:
            data.setdefault("do_update_existing", True)

    data["version"] = OPTIONS_VERSION
    return SyncOptions.model_validate(data)


def _truthy(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes", "on"}
    return bool(v)
