"""
Tool Definitions - Input validation, prompts and titles per tool.

NO DICTIONARIES AT CALL SITES - request bodies are parsed into pydantic
models; only the generated documents stay free-form.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.exceptions import InputValidationError
from app.models.domain import ToolType

MAX_TITLE_LENGTH = 500


class ToolInput(BaseModel):
    """Base for tool request bodies (camelCase on the wire)."""

    # validate_default so a missing required field still hits its rule
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_default=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Stored/echoed form of the input."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _min_length(value: str | None, minimum: int, message: str) -> str:
    if value is None or len(value) < minimum:
        raise ValueError(message)
    return value


def _required(value: str | None, message: str) -> str:
    if not value:
        raise ValueError(message)
    return value


class RoadmapInput(ToolInput):
    product_description: str | None = Field(default=None, alias="productDescription")

    @field_validator("product_description", mode="after")
    @classmethod
    def check_description(cls, value: str | None) -> str:
        return _min_length(
            value, 10, "Please provide a more detailed product description (min 10 characters)"
        )


class PRDInput(ToolInput):
    product_idea: str | None = Field(default=None, alias="productIdea")

    @field_validator("product_idea", mode="after")
    @classmethod
    def check_idea(cls, value: str | None) -> str:
        return _min_length(value, 20, "Please provide a more detailed product idea (min 20 characters)")


class PersonaInput(ToolInput):
    product_description: str | None = Field(default=None, alias="productDescription")
    target_industry: str | None = Field(default=None, alias="targetIndustry")
    user_role: str | None = Field(default=None, alias="userRole")
    pain_points: str | None = Field(default=None, alias="painPoints")
    goals: str | None = None

    @field_validator("product_description", mode="after")
    @classmethod
    def check_description(cls, value: str | None) -> str:
        return _min_length(
            value, 10, "Please provide a more detailed product description (min 10 characters)"
        )

    @field_validator("target_industry", "user_role", mode="after")
    @classmethod
    def check_required(cls, value: str | None) -> str:
        return _required(value, "Please provide target industry and user role")


class PitchDeckInput(ToolInput):
    company_name: str | None = Field(default=None, alias="companyName")
    problem: str | None = None
    solution: str | None = None
    target_market: str | None = Field(default=None, alias="targetMarket")
    business_model: str | None = Field(default=None, alias="businessModel")
    traction: str | None = None
    team: str | None = None
    ask_amount: str | None = Field(default=None, alias="askAmount")

    @field_validator("company_name", "problem", "solution", mode="after")
    @classmethod
    def check_required(cls, value: str | None) -> str:
        return _required(value, "Please provide Company Name, Problem, and Solution")


class CompetitiveAnalysisInput(ToolInput):
    product_description: str | None = Field(default=None, alias="productDescription")
    competitors: list[str] | None = None

    @field_validator("product_description", mode="after")
    @classmethod
    def check_description(cls, value: str | None) -> str:
        return _min_length(
            value, 10, "Please provide a more detailed product description (min 10 characters)"
        )

    @field_validator("competitors", mode="before")
    @classmethod
    def split_competitors(cls, value: Any) -> Any:
        # Accept "A, B, C" as well as ["A", "B", "C"]
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value


# ============================================================================
# Prompts
# ============================================================================

_JSON_ONLY = "Respond with a single JSON object and nothing else."


def _optional_lines(**fields: str | None) -> str:
    return "\n".join(f"{label}: {value}" for label, value in fields.items() if value)


def _roadmap_prompt(data: RoadmapInput) -> str:
    return f"""You are a product management expert. Create a product roadmap for:

"{data.product_description}"

Plan 6-8 items across the next four quarters, mixing features, improvements and infrastructure.
The first one or two items are "in-progress", the rest "planned".

{_JSON_ONLY} Shape:
{{"productName": str, "vision": str, "items": [{{"quarter": str, "title": str, "description": str, "status": "planned" | "in-progress"}}]}}"""


def _prd_prompt(data: PRDInput) -> str:
    return f"""You are a senior product manager. Write a Product Requirements Document for:

"{data.product_idea}"

Cover: problem statement, target users, 5-7 user stories, core features, success metrics,
technical considerations, MVP scope, risks and mitigations.

{_JSON_ONLY} Shape:
{{"title": str, "overview": str, "sections": [{{"title": str, "content": str}}]}}"""


def _persona_prompt(data: PersonaInput) -> str:
    extra = _optional_lines(**{"Known pain points": data.pain_points, "Known goals": data.goals})
    return f"""You are a user research expert. Build one realistic user persona.

Product: {data.product_description}
Target industry: {data.target_industry}
User role: {data.user_role}
{extra}

{_JSON_ONLY} Shape:
{{"name": str, "demographics": {{"age": str, "gender": str, "location": str, "education": str, "income": str, "jobTitle": str}},
"background": str, "behaviors": [str], "goals": [str], "frustrations": [str], "motivations": [str],
"preferredChannels": [str], "quote": str, "dayInLife": str}}"""


def _pitch_deck_prompt(data: PitchDeckInput) -> str:
    extra = _optional_lines(
        **{
            "Target market": data.target_market,
            "Business model": data.business_model,
            "Traction": data.traction,
            "Team": data.team,
            "Fundraising ask": data.ask_amount,
        }
    )
    return f"""You are a pitch deck consultant. Write a 10-slide investor deck
(title, problem, solution, market, product, business model, traction, competition, team, ask).

Company: {data.company_name}
Problem: {data.problem}
Solution: {data.solution}
{extra}

{_JSON_ONLY} Shape:
{{"companyName": str, "tagline": str, "slides": [{{"title": str, "content": str, "notes": str}}]}}"""


def _competitive_analysis_prompt(data: CompetitiveAnalysisInput) -> str:
    known = ", ".join(data.competitors) if data.competitors else "identify the 3-5 most relevant"
    return f"""You are a market analyst. Produce a competitive analysis for:

"{data.product_description}"

Competitors: {known}

{_JSON_ONLY} Shape:
{{"title": str, "summary": str, "competitors": [{{"name": str, "strengths": [str], "weaknesses": [str], "pricing": str}}],
"differentiators": [str], "recommendations": [str]}}"""


# ============================================================================
# Titles
# ============================================================================


def _text(document: Mapping[str, Any], key: str) -> str | None:
    value = document.get(key)
    return value.strip() if isinstance(value, str) and value.strip() else None


def _persona_title(data: PersonaInput, output: Mapping[str, Any]) -> str:
    name = _text(output, "name")
    demographics = output.get("demographics")
    job = _text(demographics, "jobTitle") if isinstance(demographics, Mapping) else None
    if name and job:
        return f"{name} - {job}"
    return name or "User Persona"


@dataclass(frozen=True)
class ToolDefinition:
    """Everything the invocation protocol needs to know about one tool."""

    tool_type: ToolType
    input_model: type[ToolInput]
    result_key: str
    temperature: float | None
    build_prompt: Callable[[Any], str]
    build_title: Callable[[Any, Mapping[str, Any]], str]


TOOL_DEFINITIONS: Mapping[ToolType, ToolDefinition] = MappingProxyType(
    {
        ToolType.ROADMAP: ToolDefinition(
            tool_type=ToolType.ROADMAP,
            input_model=RoadmapInput,
            result_key="roadmap",
            temperature=None,
            build_prompt=_roadmap_prompt,
            build_title=lambda data, out: _text(out, "productName") or "Product Roadmap",
        ),
        ToolType.PRD: ToolDefinition(
            tool_type=ToolType.PRD,
            input_model=PRDInput,
            result_key="prd",
            temperature=None,
            build_prompt=_prd_prompt,
            build_title=lambda data, out: _text(out, "title") or "Product PRD",
        ),
        ToolType.PITCH_DECK: ToolDefinition(
            tool_type=ToolType.PITCH_DECK,
            input_model=PitchDeckInput,
            result_key="pitchDeck",
            temperature=None,
            build_prompt=_pitch_deck_prompt,
            build_title=lambda data, out: data.company_name,
        ),
        ToolType.PERSONA: ToolDefinition(
            tool_type=ToolType.PERSONA,
            input_model=PersonaInput,
            result_key="persona",
            temperature=0.8,
            build_prompt=_persona_prompt,
            build_title=_persona_title,
        ),
        ToolType.COMPETITIVE_ANALYSIS: ToolDefinition(
            tool_type=ToolType.COMPETITIVE_ANALYSIS,
            input_model=CompetitiveAnalysisInput,
            result_key="competitiveAnalysis",
            temperature=None,
            build_prompt=_competitive_analysis_prompt,
            build_title=lambda data, out: _text(out, "title") or "Competitive Analysis",
        ),
    }
)


def get_tool_definition(tool_type: ToolType) -> ToolDefinition:
    return TOOL_DEFINITIONS[tool_type]


def parse_tool_input(tool_type: ToolType, payload: Any) -> ToolInput:
    """
    Validate a raw request body for a tool.

    Raises:
        InputValidationError: Body is not an object, or a field rule fails
    """
    if not isinstance(payload, Mapping):
        raise InputValidationError("Request body must be a JSON object")

    try:
        return get_tool_definition(tool_type).input_model.model_validate(payload)
    except ValidationError as e:
        raise InputValidationError(_first_error_message(e)) from e


def build_title(tool_type: ToolType, data: ToolInput, output: Mapping[str, Any]) -> str:
    """Title for the stored generation record."""
    return get_tool_definition(tool_type).build_title(data, output)[:MAX_TITLE_LENGTH]


def _first_error_message(error: ValidationError) -> str:
    first = error.errors()[0]
    if first["type"] == "value_error":
        return str(first["ctx"]["error"])
    field = ".".join(str(part) for part in first["loc"]) or "body"
    return f"{field}: {first['msg']}"
