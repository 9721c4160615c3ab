"""
Pydantic models for alumni, company and subscriber documents.

Stored documents keep the camelCase keys already used in the database
(graduationYear, otherJobs, ...); the models expose snake_case attributes
through aliases.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger(__name__)


FUNDING_SUFFIXES = {
    "K": 1_000,
    "M": 1_000_000,
    "B": 1_000_000_000,
    "T": 1_000_000_000_000,
}


def parse_funding(funding: Optional[str]) -> float:
    """
    Decode a suffix-encoded funding amount such as "1.1M" or "2.2B".

    Empty, unparsable or unknown-suffix values decode to 0.
    """
    if not funding:
        return 0.0

    funding = funding.strip().upper()
    multiplier = FUNDING_SUFFIXES.get(funding[-1])
    if multiplier is None:
        return 0.0

    try:
        return float(funding[:-1]) * multiplier
    except ValueError:
        return 0.0


class AlumniRecord(BaseModel):
    """
    One person's tracked employment profile.

    Shared by the current (alumnis) and previous (prevalumnis) snapshot collections.
    """
    url: Optional[str] = Field(None, description="Profile slug, unique identity key")
    name: Optional[str] = Field(None, description="Display name")
    job: Optional[str] = Field(None, description="Current job title")
    company: Optional[str] = Field(None, description="Current employer")
    location: Optional[str] = Field(None, description="Current location, 'City, Region'")
    graduation_year: Optional[int] = Field(None, alias="graduationYear")
    major: Optional[str] = Field(None, description="Field of study")
    other_education: Optional[str] = Field(None, alias="otherEducation")
    other_jobs: List[str] = Field(default_factory=list, alias="otherJobs")
    html: Optional[str] = Field(None, description="Raw source content")
    error_parsing: bool = Field(default=False, alias="errorParsing")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
        "frozen": True,
    }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "AlumniRecord":
        """Build a record from a MongoDB document."""
        document = {k: v for k, v in document.items() if k != "_id"}
        return cls.model_validate(document)

    @classmethod
    def from_source(cls, item: Any) -> "AlumniRecord":
        """
        Build a record from a raw feed item.

        Items that fail validation are kept with error_parsing set and the
        offending fields dropped.
        """
        if not isinstance(item, dict):
            return cls(html=str(item), error_parsing=True)

        try:
            return cls.model_validate(item)
        except ValidationError as e:
            bad_fields = {error["loc"][0] for error in e.errors() if error["loc"]}
            salvaged = {k: v for k, v in item.items() if k not in bad_fields}
            salvaged.pop("errorParsing", None)
            salvaged.pop("error_parsing", None)
            logger.warning(
                "Malformed alumni record retained",
                url=item.get("url"),
                bad_fields=sorted(str(f) for f in bad_fields)
            )
            try:
                return cls.model_validate({**salvaged, "errorParsing": True})
            except ValidationError:
                url = item.get("url")
                return cls(
                    url=url if isinstance(url, str) else None,
                    html=str(item),
                    error_parsing=True
                )

    def to_document(self) -> Dict[str, Any]:
        """Serialize with the stored camelCase keys."""
        return self.model_dump(by_alias=True)


class Founder(BaseModel):
    """Company founder."""
    position: Optional[str] = None
    name: Optional[str] = None


class MatchedAlumnus(BaseModel):
    """Alumnus matched to a company by employer name."""
    name: Optional[str] = None
    position: Optional[str] = None
    url: Optional[str] = None


class CompanyRecord(BaseModel):
    """EquityZen company directory entry."""
    name: str = Field(..., description="Company name")
    founding_date: Optional[str] = Field(None, alias="foundingDate")
    notable_investors: Optional[str] = Field(None, alias="notableInvestors")
    hq: Optional[str] = Field(None, description="Headquarters")
    total_funding: str = Field(default="", alias="totalFunding")
    founders: List[Founder] = Field(default_factory=list)
    alumnis: List[MatchedAlumnus] = Field(default_factory=list)
    bio: Optional[str] = None
    ezen_link: Optional[str] = Field(None, alias="ezenLink")
    industries: List[str] = Field(default_factory=list)
    favorite: bool = Field(default=False)

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def funding_value(self) -> float:
        """Total funding decoded to a number."""
        return parse_funding(self.total_funding)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Subscriber(BaseModel):
    """Recipient of the monthly alumni updates."""
    email: str = Field(..., description="Subscriber email")
    name: Optional[str] = Field(None, description="Display name")
    subscribed: bool = Field(default=True)

    model_config = {"extra": "ignore"}


class RefreshResult(BaseModel):
    """Outcome of one source refresh."""
    alumni_fetched: int = Field(default=0)
    malformed_alumni: int = Field(default=0)
    companies_fetched: int = Field(default=0)
    companies_matched: int = Field(default=0)
    duration_seconds: float = Field(default=0.0)
    finished_at: datetime = Field(default_factory=datetime.utcnow)
