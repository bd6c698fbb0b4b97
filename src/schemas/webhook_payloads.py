"""
Webhook payload schemas - raw input from each ad platform.
Platforms add fields without notice, so every model tolerates extras.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class _PlatformPayload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


# --- Meta (Facebook / Instagram) ----------------------------------------------


class MetaLeadgenValue(_PlatformPayload):
    """`value` of a leadgen change: only ids, never the filled form."""
    leadgen_id: Optional[str] = None
    page_id: Optional[str] = None
    form_id: Optional[str] = None
    ad_id: Optional[str] = None
    adgroup_id: Optional[str] = None
    created_time: Optional[int | str] = None
    platform: Optional[str] = None  # facebook, instagram


class MetaChange(_PlatformPayload):
    field: str = ""
    value: MetaLeadgenValue = Field(default_factory=MetaLeadgenValue)


class MetaEntry(_PlatformPayload):
    id: Optional[str] = None
    time: Optional[int] = None
    changes: list[MetaChange] = Field(default_factory=list)


class MetaWebhookPayload(_PlatformPayload):
    """Meta webhook notification: {object, entry: [{changes: [{field, value}]}]}."""
    object: Optional[str] = None
    entry: list[MetaEntry] = Field(default_factory=list)

    def leadgen_changes(self) -> list[MetaLeadgenValue]:
        """Every leadgen change value carrying a leadgen_id, in delivery order."""
        values = []
        for entry in self.entry:
            for change in entry.changes:
                if change.field == "leadgen" and change.value.leadgen_id:
                    values.append(change.value)
        return values


class MetaFieldData(_PlatformPayload):
    name: Optional[str] = None
    field_key: Optional[str] = None
    values: list[str] = Field(default_factory=list)


class MetaLeadDetail(_PlatformPayload):
    """Graph API `GET /{leadgen_id}` response - the filled lead form."""
    id: str
    created_time: Optional[str] = None
    ad_id: Optional[str] = None
    adgroup_id: Optional[str] = None
    form_id: Optional[str] = None
    campaign_id: Optional[str] = None
    is_organic: Optional[bool] = None
    platform: Optional[str] = None
    field_data: list[MetaFieldData] = Field(default_factory=list)


# --- Grupo OLX / ZAP ---------------------------------------------------------


class OlxZapLeadPayload(_PlatformPayload):
    """
    Grupo OLX lead delivery.
    originLeadId, name and timestamp are required; the handler checks them
    explicitly so a missing field answers 400 before any write.
    """
    leadOrigin: Optional[str] = None
    timestamp: Optional[str] = None
    originLeadId: Optional[str] = None
    originListingId: Optional[str] = None
    clientListingId: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    ddd: Optional[str] = None
    phone: Optional[str] = None
    phoneNumber: Optional[str] = None
    message: Optional[str] = None
    temperature: Optional[str] = None  # Alta, Média, Baixa
    transactionType: Optional[str] = None  # SELL, RENT


# --- Google Ads lead forms ------------------------------------------------------


class GoogleAdsColumn(_PlatformPayload):
    column_id: Optional[str] = None
    column_name: Optional[str] = None
    string_value: Optional[str] = None
    phone_number_value: Optional[str] = None


class GoogleAdsLeadPayload(_PlatformPayload):
    lead_id: Optional[str] = None
    gclid: Optional[str] = None
    campaign_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    creative_id: Optional[str] = None
    form_id: Optional[str] = None
    is_test: bool = False
    user_column_data: list[GoogleAdsColumn] = Field(default_factory=list)
