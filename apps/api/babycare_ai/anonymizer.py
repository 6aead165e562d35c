"""Privacy scrubbing for records that leave the device."""
from __future__ import annotations

import hashlib
import hmac
from typing import Callable, Dict, Type, TypeVar

from pydantic import BaseModel

from .device import DeviceIdentity
from .schemas import (
    ActivityRecord,
    BabyProfile,
    FeedingRecord,
    GrowthRecord,
    RecordBundle,
    SleepRecord,
)

NAME_PLACEHOLDER = "*"
ANONYMOUS_NAME = "Anonymous"

RecordT = TypeVar("RecordT", bound=BaseModel)


class PayloadAnonymizer:
    """Tokenizes identifiers and strips notes, media and names.

    Identifier tokens are an HMAC over the device secret, so the same id maps
    to the same token within an installation and to unrelated tokens
    everywhere else.
    """

    def __init__(self, device: DeviceIdentity) -> None:
        self._device = device
        self._transforms: Dict[Type[BaseModel], Callable[[BaseModel], BaseModel]] = {
            BabyProfile: self._baby,
            SleepRecord: self._sleep,
            FeedingRecord: self._feeding,
            ActivityRecord: self._activity,
            GrowthRecord: self._growth,
        }

    def transform(self, record: RecordT, enabled: bool) -> RecordT:
        if not enabled:
            return record
        try:
            handler = self._transforms[type(record)]
        except KeyError:
            raise TypeError(f"no anonymizer for {type(record).__name__}") from None
        return handler(record)  # type: ignore[return-value]

    def transform_bundle(self, bundle: RecordBundle, enabled: bool) -> RecordBundle:
        if not enabled:
            return bundle
        return RecordBundle(
            baby=self.transform(bundle.baby, True) if bundle.baby is not None else None,
            sleep=[self.transform(item, True) for item in bundle.sleep],
            feeding=[self.transform(item, True) for item in bundle.feeding],
            activities=[self.transform(item, True) for item in bundle.activities],
            growth=[self.transform(item, True) for item in bundle.growth],
        )

    def anonymize_identifier(self, identifier: str) -> str:
        secret = self._device.device_secret().encode("utf-8")
        return hmac.new(secret, identifier.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def anonymize_name(name: str) -> str:
        stripped = (name or "").strip()
        if not stripped:
            return ANONYMOUS_NAME
        return f"{stripped[0]}{NAME_PLACEHOLDER}"

    def _baby(self, baby: BabyProfile) -> BabyProfile:
        return baby.model_copy(
            update={
                "id": self.anonymize_identifier(baby.id),
                "name": self.anonymize_name(baby.name),
                "photo_url": None,
            }
        )

    def _record_ids(self, record: BaseModel) -> dict:
        return {
            "id": self.anonymize_identifier(record.id),
            "baby_id": self.anonymize_identifier(record.baby_id),
            "notes": None,
        }

    def _sleep(self, record: SleepRecord) -> SleepRecord:
        update = self._record_ids(record)
        update["interruptions"] = [
            {key: value for key, value in item.items() if key not in {"notes", "note"}}
            for item in record.interruptions
        ]
        return record.model_copy(update=update)

    def _feeding(self, record: FeedingRecord) -> FeedingRecord:
        return record.model_copy(update=self._record_ids(record))

    def _activity(self, record: ActivityRecord) -> ActivityRecord:
        update = self._record_ids(record)
        update["photo_url"] = None
        return record.model_copy(update=update)

    def _growth(self, record: GrowthRecord) -> GrowthRecord:
        return record.model_copy(update=self._record_ids(record))
