from pydantic import BaseModel, Field, field_validator, model_validator
from uuid import UUID
from datetime import date, datetime
from typing import Optional

GENDER_PATTERN = "^(male|female)$"

# Update fields backed by NOT NULL columns; omitting them is fine, nulling is not.
NON_NULLABLE_UPDATE_FIELDS = frozenset({
    "full_name",
    "ministry_involvement",
    "hobbies",
    "languages_spoken",
    "preferred_denominations",
    "must_share_denomination",
    "is_verified",
    "is_faith_verified",
    "is_marriage_intent_verified",
    "is_active",
    "onboarding_completed",
})


def _check_age_window(age_min: Optional[int], age_max: Optional[int]) -> None:
    if age_min is not None and age_max is not None and age_min > age_max:
        raise ValueError(
            f"preferred_age_min ({age_min}) exceeds preferred_age_max ({age_max})"
        )


class ProfileBase(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    gender: str = Field(pattern=GENDER_PATTERN)
    seeking_genders: Optional[list[str]] = None
    date_of_birth: Optional[date] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    denomination: Optional[str] = None
    church_attendance_frequency: Optional[str] = None
    ministry_involvement: list[str] = []
    education_level: Optional[str] = None
    hobbies: list[str] = []
    languages_spoken: list[str] = []

    preferred_age_min: Optional[int] = Field(None, ge=18, le=100)
    preferred_age_max: Optional[int] = Field(None, ge=18, le=100)
    preferred_radius_km: Optional[float] = Field(None, gt=0)
    preferred_denominations: list[str] = []
    must_share_denomination: bool = False

    @field_validator("seeking_genders")
    @classmethod
    def _known_genders(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is not None and any(g not in ("male", "female") for g in v):
            raise ValueError("seeking_genders may only contain 'male' or 'female'")
        return v


class ProfileCreate(ProfileBase):
    email: str = Field(min_length=3, max_length=320)
    is_verified: bool = False
    is_faith_verified: bool = False
    is_marriage_intent_verified: bool = False
    onboarding_completed: bool = False

    @model_validator(mode="after")
    def _age_window_must_be_ordered(self) -> "ProfileCreate":
        _check_age_window(self.preferred_age_min, self.preferred_age_max)
        return self


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    seeking_genders: Optional[list[str]] = None
    date_of_birth: Optional[date] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    denomination: Optional[str] = None
    church_attendance_frequency: Optional[str] = None
    ministry_involvement: Optional[list[str]] = None
    education_level: Optional[str] = None
    hobbies: Optional[list[str]] = None
    languages_spoken: Optional[list[str]] = None
    preferred_age_min: Optional[int] = Field(None, ge=18, le=100)
    preferred_age_max: Optional[int] = Field(None, ge=18, le=100)
    preferred_radius_km: Optional[float] = Field(None, gt=0)
    preferred_denominations: Optional[list[str]] = None
    must_share_denomination: Optional[bool] = None
    is_verified: Optional[bool] = None
    is_faith_verified: Optional[bool] = None
    is_marriage_intent_verified: Optional[bool] = None
    is_active: Optional[bool] = None
    onboarding_completed: Optional[bool] = None

    @model_validator(mode="after")
    def _no_null_for_required_fields(self) -> "ProfileUpdate":
        nulled = sorted(
            f for f in self.model_fields_set & NON_NULLABLE_UPDATE_FIELDS
            if getattr(self, f) is None
        )
        if nulled:
            raise ValueError(f"Fields cannot be null: {nulled}")
        _check_age_window(self.preferred_age_min, self.preferred_age_max)
        return self


class ProfileResponse(ProfileBase):
    id: UUID
    email: str
    is_verified: bool
    is_faith_verified: bool
    is_marriage_intent_verified: bool
    is_active: bool
    onboarding_completed: bool
    created_at: datetime

    model_config = {"from_attributes": True}
