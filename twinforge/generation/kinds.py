# -*- coding: utf-8 -*-
"""Generation flow profiles (meal plan, recipes, shopping list)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Type

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError
from .skeletons import KeyFn, date_keys, ordinal_keys

DAYS_PER_WEEK = 7
DEFAULT_WEEK_COUNT = 1
MAX_WEEK_COUNT = 4
DEFAULT_RECIPE_COUNT = 4
RECIPE_COUNT_OPTIONS = (2, 4, 6, 8)
DEFAULT_CATEGORY_COUNT = 6

REWARD_POINTS: Dict[str, int] = {
    "recipe_generated": 20,
    "meal_plan_generated": 35,
    "shopping_list_generated": 15,
}


class MealPlanConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected_inventory_id: Optional[str] = None
    # First week of the plan; ``week_count`` consecutive weeks are streamed one after another.
    week_number: int = Field(default=1, ge=1, le=4)
    week_count: int = Field(default=DEFAULT_WEEK_COUNT, ge=1, le=MAX_WEEK_COUNT)
    start_date: Optional[date] = None
    batch_cooking: bool = False


class RecipeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected_inventory_id: Optional[str] = None
    recipe_count: int = DEFAULT_RECIPE_COUNT

    @field_validator("recipe_count")
    @classmethod
    def _known_count(cls, value: int) -> int:
        if value not in RECIPE_COUNT_OPTIONS:
            raise ValueError(f"recipe_count must be one of {list(RECIPE_COUNT_OPTIONS)}")
        return value


class ShoppingListConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected_meal_plan_id: Optional[str] = None
    generation_mode: Literal["user_only", "user_and_family"] = "user_only"


@dataclass(frozen=True)
class GenerationKind:
    """Everything that differs between the three generation flows."""

    name: str
    endpoint: str
    config_model: Type[BaseModel]
    unit_label: Tuple[str, str]
    artifact_label: str
    artifact_field: str
    reward_action: str
    required_selection: str
    unit_count: Callable[[Any], int]
    key_fn: Callable[[Any], KeyFn]
    key_for: Callable[[Dict[str, Any]], Optional[str]]
    # (config, subject_id, session_id, phase) -> JSON body of that phase's request
    request_body: Callable[[Any, str, str, int], Dict[str, Any]]
    is_complete: Callable[[Dict[str, Any], int], bool]
    # Number of sequential streams one session runs; units are split evenly across them.
    phase_count: Callable[[Any], int] = lambda config: 1
    phase_label: str = "phase"
    # Pins values that must not drift during a session (e.g. "today").
    resolve: Callable[[Any], Any] = lambda config: config

    @property
    def reward_points(self) -> int:
        return REWARD_POINTS.get(self.reward_action, 0)

    def parse_config(self, raw: Any) -> BaseModel:
        """Validate preconditions; raises ``ValidationError`` before any network call."""
        if isinstance(raw, self.config_model):
            config = raw
        else:
            try:
                config = self.config_model.model_validate(raw or {})
            except pydantic.ValidationError as exc:
                raise ValidationError(f"Invalid {self.name} configuration: {exc.errors()[0]['msg']}") from exc
        if not getattr(config, self.required_selection, None):
            raise ValidationError(f"{self.required_selection} is required to generate a {self.artifact_label}")
        return self.resolve(config)

    def units_from_artifact(self, payload: Dict[str, Any]) -> List[Tuple[Optional[str], Dict[str, Any]]]:
        items = payload.get(self.artifact_field) or []
        return [(self.key_for(item), item) for item in items if isinstance(item, dict)]


# ---------- meal plan ----------


def _resolve_meal_plan(config: MealPlanConfig) -> MealPlanConfig:
    if config.start_date is None:
        return config.model_copy(update={"start_date": date.today()})
    return config


def week_start(config: MealPlanConfig, phase: int = 0) -> date:
    """First day of the ``phase``-th streamed week."""
    if config.start_date is None:
        raise ValueError("start_date must be resolved before building a meal plan")
    return config.start_date + timedelta(days=DAYS_PER_WEEK * (config.week_number - 1 + phase))


def _meal_plan_body(config: MealPlanConfig, subject_id: str, session_id: str, phase: int) -> Dict[str, Any]:
    start = week_start(config, phase)
    return {
        "user_id": subject_id,
        "session_id": session_id,
        "inventory_id": config.selected_inventory_id,
        "week_number": config.week_number + phase,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=DAYS_PER_WEEK - 1)).isoformat(),
        "batch_cooking_enabled": config.batch_cooking,
    }


def _day_key(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("date")
    if isinstance(value, str) and len(value) >= 10:
        return value[:10]
    return None


def _meal_plan_complete(payload: Dict[str, Any], expected: int) -> bool:
    days = payload.get("days")
    if not isinstance(days, list) or len(days) != expected:
        return False
    return all(isinstance(d, dict) and _day_key(d) for d in days)


# ---------- recipes ----------


def _recipes_body(config: RecipeConfig, subject_id: str, session_id: str, phase: int = 0) -> Dict[str, Any]:
    return {
        "user_id": subject_id,
        "session_id": session_id,
        "inventory_id": config.selected_inventory_id,
        "filters": {"recipe_count": config.recipe_count},
    }


def _ordinal_key(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("index")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _recipes_complete(payload: Dict[str, Any], expected: int) -> bool:
    recipes = payload.get("recipes")
    if not isinstance(recipes, list) or len(recipes) < max(expected, 1):
        return False
    return all(isinstance(r, dict) and r.get("title") for r in recipes)


# ---------- shopping list ----------


def _shopping_list_body(config: ShoppingListConfig, subject_id: str, session_id: str, phase: int = 0) -> Dict[str, Any]:
    return {
        "user_id": subject_id,
        "session_id": session_id,
        "meal_plan_id": config.selected_meal_plan_id,
        "generation_mode": config.generation_mode,
    }


def _shopping_list_complete(payload: Dict[str, Any], expected: int) -> bool:
    categories = payload.get("categories")
    if not isinstance(categories, list) or not categories:
        return False
    return all(isinstance(c, dict) and isinstance(c.get("items"), list) for c in categories)


MEAL_PLAN = GenerationKind(
    name="meal_plan",
    endpoint="meal-plan-generator",
    config_model=MealPlanConfig,
    unit_label=("day", "days"),
    artifact_label="meal plan",
    artifact_field="days",
    reward_action="meal_plan_generated",
    required_selection="selected_inventory_id",
    unit_count=lambda config: DAYS_PER_WEEK * config.week_count,
    key_fn=lambda config: date_keys(week_start(config)),
    key_for=_day_key,
    request_body=_meal_plan_body,
    is_complete=_meal_plan_complete,
    phase_count=lambda config: config.week_count,
    phase_label="week",
    resolve=_resolve_meal_plan,
)

RECIPES = GenerationKind(
    name="recipes",
    endpoint="recipe-generator",
    config_model=RecipeConfig,
    unit_label=("recipe", "recipes"),
    artifact_label="recipe batch",
    artifact_field="recipes",
    reward_action="recipe_generated",
    required_selection="selected_inventory_id",
    unit_count=lambda config: config.recipe_count,
    key_fn=lambda config: ordinal_keys(),
    key_for=_ordinal_key,
    request_body=_recipes_body,
    is_complete=_recipes_complete,
)

SHOPPING_LIST = GenerationKind(
    name="shopping_list",
    endpoint="shopping-list-generator",
    config_model=ShoppingListConfig,
    unit_label=("category", "categories"),
    artifact_label="shopping list",
    artifact_field="categories",
    reward_action="shopping_list_generated",
    required_selection="selected_meal_plan_id",
    unit_count=lambda config: DEFAULT_CATEGORY_COUNT,
    key_fn=lambda config: ordinal_keys(),
    key_for=_ordinal_key,
    request_body=_shopping_list_body,
    is_complete=_shopping_list_complete,
)

GENERATION_KINDS: Dict[str, GenerationKind] = {
    kind.name: kind for kind in (MEAL_PLAN, RECIPES, SHOPPING_LIST)
}


def get_kind(name: str) -> GenerationKind:
    try:
        return GENERATION_KINDS[name]
    except KeyError:
        raise KeyError(f"Unknown generation kind: {name}") from None
