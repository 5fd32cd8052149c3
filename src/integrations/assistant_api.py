"""Hosted AI functions — diet-coach chat, speech synthesis, goals, food photos,
meal planning and recipe advice.

Thin JSON-over-HTTP client for the serverless functions deployed next to the
hosted data store. Every function shares the same error contract:

- HTTP 429 → RateLimitedError (too many requests)
- HTTP 402 → QuotaExceededError (AI credits exhausted)
- anything else that is not a usable reply → AssistantError

Failures raise: the voice session tells the three cases apart to pick the
message shown to the user.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field

import httpx

from src.data.models import NutritionGoals

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 30

# Order of the meal planner steps; "review" follows the last one.
PLAN_STEPS = ("protein", "carbs", "vegetables", "dairy", "fruits")

_MEAL_TYPES = {
    "завтрак": "breakfast",
    "обед": "lunch",
    "ужин": "dinner",
    "перекус": "snack",
}


class AssistantError(Exception):
    """Raised when a hosted AI function fails or returns an unusable reply."""


class RateLimitedError(AssistantError):
    """HTTP 429 from the AI gateway."""


class QuotaExceededError(AssistantError):
    """HTTP 402 — the AI gateway needs a top-up."""


@dataclass
class AssistantReply:
    """Parsed reply of the ai-assistant function."""

    text: str
    actions: list[dict] = field(default_factory=list)


@dataclass
class FoodItem:
    """One food with its portion, as the AI functions describe it."""

    name: str
    quantity: float = 0.0
    unit: str = "g"
    calories: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0
    reason: str = ""


@dataclass
class FoodAnalysis:
    """What analyze-food recognised on a meal photo."""

    foods: list[FoodItem]
    calories: float
    protein: float
    fat: float
    carbs: float
    meal_type: str | None = None
    notes: str = ""


@dataclass
class MealPlanStep:
    """plan-meals suggestions for one step of building a meal."""

    items: list[FoodItem]
    message: str = ""
    next_step: str = "review"
    budget: dict = field(default_factory=dict)


@dataclass
class RecipeRecommendation:
    name: str
    status: str
    reason: str = ""
    portion: float = 1.0
    calories: float = 0.0


@dataclass
class RecipeAdvice:
    """recommend-recipes reply: saved dishes that fit the remaining budget."""

    recommendations: list[RecipeRecommendation]
    simple_foods: list[FoodItem]
    coach_message: str = ""
    budget: dict = field(default_factory=dict)
    fallback: bool = False


def _parse_actions(raw: object) -> list[dict]:
    """Keep only well-formed ``{"type": ...}`` action objects."""
    if not isinstance(raw, list):
        return []
    return [
        item for item in raw
        if isinstance(item, dict) and isinstance(item.get("type"), str) and item["type"]
    ]


def _to_int(value: object) -> int:
    try:
        return int(round(float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise AssistantError(f"Expected a number, got {value!r}") from exc


def _water_ml(value: object) -> int:
    """Water targets come back in litres or millilitres; normalise to ml."""
    if _is_litres(value):
        return _to_int(float(value) * 1000)  # type: ignore[arg-type]
    return _to_int(value)


def _is_litres(value: object) -> bool:
    try:
        return 0 < float(value) < 20  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def _to_float(value: object, default: float = 0.0) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _parse_foods(raw: object, name_key: str = "name") -> list[FoodItem]:
    """Turn a list of food dicts into FoodItems, skipping entries without a name."""
    if not isinstance(raw, list):
        return []
    foods = []
    for item in raw:
        if not isinstance(item, dict) or not item.get(name_key):
            continue
        foods.append(FoodItem(
            name=str(item[name_key]),
            quantity=_to_float(item.get("quantity")),
            unit=str(item.get("unit") or "g"),
            calories=_to_float(item.get("calories")),
            protein=_to_float(item.get("protein")),
            fat=_to_float(item.get("fat")),
            carbs=_to_float(item.get("carbs")),
            reason=str(item.get("reason") or ""),
        ))
    return foods


def _meal_type(raw: object) -> str | None:
    """Map the analyzer's meal type (Russian or English) to a stored one."""
    value = str(raw or "").strip().lower()
    if value in _MEAL_TYPES.values():
        return value
    return _MEAL_TYPES.get(value)


class AssistantClient:
    """Client for the hosted AI functions."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
            headers["apikey"] = self._api_key
        return headers

    async def _invoke(self, function: str, payload: dict) -> dict:
        """POST to a serverless function and return its JSON body."""
        url = f"{self._base_url}/functions/v1/{function}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", function, exc)
            raise AssistantError(f"{function} request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        error = data.get("error")

        if resp.status_code == 429:
            logger.warning("%s rate limited", function)
            raise RateLimitedError(error or "Too many requests")
        if resp.status_code == 402:
            logger.warning("%s quota exceeded", function)
            raise QuotaExceededError(error or "Payment required")
        # A fallback reply still carries usable content next to its error.
        if resp.status_code >= 400 or (error and not data.get("fallback")):
            logger.error("%s failed: HTTP %d %s", function, resp.status_code, error)
            raise AssistantError(error or f"{function} returned HTTP {resp.status_code}")
        return data

    async def ask(
        self,
        text: str,
        user_context: dict | None = None,
        history: list[dict] | None = None,
    ) -> AssistantReply:
        """Send the user's message (plus prior turns) to the diet coach."""
        messages = list(history or [])
        messages.append({"role": "user", "content": text})
        payload: dict = {"messages": messages}
        if user_context:
            payload["userContext"] = user_context

        data = await self._invoke("ai-assistant", payload)
        reply = (data.get("response") or data.get("message") or "").strip()
        if not reply:
            raise AssistantError("ai-assistant returned an empty reply")

        actions = _parse_actions(data.get("actions"))
        logger.info("Assistant replied with %d chars, %d actions", len(reply), len(actions))
        return AssistantReply(text=reply, actions=actions)

    async def synthesize(self, text: str, voice: str) -> bytes:
        """Return MP3 bytes for ``text`` spoken with ``voice``."""
        data = await self._invoke("text-to-speech", {"text": text, "voice": voice})
        encoded = data.get("audioContent")
        if not encoded:
            raise AssistantError("text-to-speech returned no audio")
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AssistantError("text-to-speech returned invalid base64") from exc
        logger.info("Synthesized %d bytes of speech", len(audio))
        return audio

    async def calculate_goals(self, profile: dict) -> NutritionGoals:
        """Ask the goal calculator for daily calorie / macro / water targets.

        Args:
            profile: age, gender, height, currentWeight, targetWeight (optional),
                     activityLevel, goal — as the function expects them.
        """
        data = await self._invoke("calculate-goals", profile)
        if "dailyCalories" not in data:
            raise AssistantError("calculate-goals reply is missing dailyCalories")
        return NutritionGoals(
            daily_calories=_to_int(data["dailyCalories"]),
            protein=_to_int(data.get("protein", 0)),
            fat=_to_int(data.get("fat", 0)),
            carbs=_to_int(data.get("carbs", 0)),
            water_ml=_water_ml(data.get("water", 0)),
            explanation=str(data.get("explanation", "")),
        )

    async def analyze_food(self, image: bytes, mime_type: str = "image/jpeg") -> FoodAnalysis:
        """Recognise the foods on a meal photo and estimate their nutrition.

        The photo travels inline as a data URL, so nothing has to be uploaded
        to storage first. Totals missing from the reply are summed from the
        listed foods.
        """
        encoded = base64.b64encode(image).decode("ascii")
        data = await self._invoke(
            "analyze-food", {"imageUrl": f"data:{mime_type};base64,{encoded}"},
        )
        foods = _parse_foods(data.get("foods"))
        if not foods and "totalCalories" not in data:
            raise AssistantError("analyze-food recognised no food")

        def total(key: str, attr: str) -> float:
            if key in data:
                return _to_float(data[key])
            return sum(getattr(food, attr) for food in foods)

        analysis = FoodAnalysis(
            foods=foods,
            calories=total("totalCalories", "calories"),
            protein=total("totalProtein", "protein"),
            fat=total("totalFat", "fat"),
            carbs=total("totalCarbs", "carbs"),
            meal_type=_meal_type(data.get("mealType")),
            notes=str(data.get("notes") or ""),
        )
        logger.info("Photo analysed: %d foods, %.0f kcal", len(foods), analysis.calories)
        return analysis

    async def plan_meals(
        self,
        meal_type: str,
        step: str = PLAN_STEPS[0],
        selected: list[FoodItem] | None = None,
    ) -> MealPlanStep:
        """Suggest foods for one step of a meal, within the meal's budget.

        Args:
            meal_type: breakfast, lunch, dinner or snack.
            step: one of PLAN_STEPS.
            selected: foods already picked in earlier steps.
        """
        if step not in PLAN_STEPS:
            raise ValueError(f"Unknown plan step {step!r}; expected one of {', '.join(PLAN_STEPS)}")
        payload = {
            "step": step,
            "mealType": meal_type,
            "selected": [
                {
                    "food_name": food.name,
                    "quantity": food.quantity,
                    "unit": food.unit,
                    "calories": food.calories,
                    "protein": food.protein,
                    "fat": food.fat,
                    "carbs": food.carbs,
                }
                for food in selected or []
            ],
        }
        data = await self._invoke("plan-meals", payload)
        budget = data.get("budget")
        return MealPlanStep(
            items=_parse_foods(data.get("items"), name_key="food_name"),
            message=str(data.get("message") or ""),
            next_step=str(data.get("nextStep") or "review"),
            budget=budget if isinstance(budget, dict) else {},
        )

    async def recommend_recipes(self) -> RecipeAdvice:
        """Rank the user's saved dishes against what is left of today's budget."""
        data = await self._invoke("recommend-recipes", {})
        recommendations = [
            RecipeRecommendation(
                name=str(item["name"]),
                status=str(item.get("status") or "perfect"),
                reason=str(item.get("reason") or ""),
                portion=_to_float(item.get("suggestedPortion"), 1.0),
                calories=_to_float(item.get("calories")),
            )
            for item in data.get("recommendations") or []
            if isinstance(item, dict) and item.get("name")
        ]
        budget = data.get("budget")
        return RecipeAdvice(
            recommendations=recommendations,
            simple_foods=_parse_foods(data.get("simpleFoodSuggestions")),
            coach_message=str(data.get("coachMessage") or ""),
            budget=budget if isinstance(budget, dict) else {},
            fallback=bool(data.get("fallback")),
        )
