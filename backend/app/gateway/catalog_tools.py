"""
Lunch catalog tools — a small in-memory domain so the gateway runs end to end.

Each tool carries:
  - name:         snake_case tool name
  - description:  human-readable purpose
  - input_schema: JSON Schema for arguments
  - execute() / stream(): the implementation

Tools:
  get_restaurants, add_restaurant, pick_random_restaurant, get_visit_statistics
  get_restaurants_stream, search_restaurants_stream, analyze_restaurants_stream  (streaming)

Streaming tools yield one fragment per step: {"type": "text", "text": ..., ...}.
"""
import asyncio
import random
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from models.tools import PromptArgument

from .errors import ToolExecutionError
from .prompts import Prompt, PromptRegistry, Resource, ResourceRegistry
from .tool_registry import MCPTool, StreamingTool, ToolRegistry

_SEED = [
    ("Guelaguetza", "3014 W Olympic Blvd", "Oaxacan Mexican"),
    ("Republique", "624 S La Brea Ave", "French Bistro"),
    ("Night + Market WeHo", "9041 Sunset Blvd", "Thai Street Food"),
    ("Gracias Madre", "8905 Melrose Ave", "Vegan Mexican"),
    ("The Ivy", "113 N Robertson Blvd", "Californian"),
    ("Catch LA", "8715 Melrose Ave", "Seafood"),
    ("Cecconi's", "8764 Melrose Ave", "Italian"),
    ("Earls Kitchen + Bar", "8730 W Sunset Blvd", "Global Comfort Food"),
    ("Pump Restaurant", "8948 Santa Monica Blvd", "Mediterranean"),
    ("Craig's", "8826 Melrose Ave", "American Contemporary"),
]


class RestaurantCatalog:
    def __init__(self, seed: bool = True):
        self._restaurants: list[dict] = []
        self._visits: Counter = Counter()
        if seed:
            now = datetime.now(timezone.utc)
            for i, (name, location, food_type) in enumerate(_SEED):
                self._restaurants.append({
                    "id": str(i + 1),
                    "name": name,
                    "location": location,
                    "foodType": food_type,
                    "dateAdded": (now - timedelta(days=len(_SEED) - i)).isoformat(),
                })

    def all(self) -> list[dict]:
        return [dict(r) for r in self._restaurants]

    def add(self, name: str, location: str, food_type: str) -> dict:
        if any(r["name"].lower() == name.lower() for r in self._restaurants):
            raise ToolExecutionError(f"A restaurant named '{name}' already exists")
        restaurant = {
            "id": str(len(self._restaurants) + 1),
            "name": name,
            "location": location,
            "foodType": food_type,
            "dateAdded": datetime.now(timezone.utc).isoformat(),
        }
        self._restaurants.append(restaurant)
        return dict(restaurant)

    def pick_random(self) -> Optional[dict]:
        if not self._restaurants:
            return None
        choice = random.choice(self._restaurants)
        self._visits[choice["id"]] += 1
        return dict(choice)

    def visit_statistics(self) -> list[dict]:
        stats = [
            {"restaurant": r["name"], "visitCount": self._visits[r["id"]]}
            for r in self._restaurants
        ]
        return sorted(stats, key=lambda s: s["visitCount"], reverse=True)

    def search(self, query: str) -> list[dict]:
        q = query.lower()
        return [
            dict(r) for r in self._restaurants
            if q in r["name"].lower() or q in r["location"].lower() or q in r["foodType"].lower()
        ]


def _describe(restaurant: dict) -> str:
    return (
        f"**{restaurant['name']}**\n"
        f"Location: {restaurant['location']}\n"
        f"Food Type: {restaurant['foodType']}\n"
    )


def _require_text(arguments: dict, key: str, max_length: int) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolExecutionError(f"'{key}' is required and must be a non-empty string")
    value = value.strip()
    if len(value) > max_length:
        raise ToolExecutionError(f"'{key}' must be at most {max_length} characters")
    return value


class CatalogTool(MCPTool):
    def __init__(self, catalog: RestaurantCatalog):
        self.catalog = catalog


class CatalogStreamingTool(StreamingTool):
    def __init__(self, catalog: RestaurantCatalog, item_delay: float = 0.2):
        self.catalog = catalog
        self.item_delay = item_delay


# ── Request/response tools ────────────────────────────────────────────────────

class GetRestaurantsTool(CatalogTool):
    name = "get_restaurants"
    description = "Get a list of all restaurants available for lunch."

    async def execute(self, arguments: dict) -> Any:
        restaurants = self.catalog.all()
        return {"restaurants": restaurants, "total": len(restaurants)}


class AddRestaurantTool(CatalogTool):
    name = "add_restaurant"
    description = "Add a new restaurant to the lunch options."
    input_schema = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "The name of the restaurant", "minLength": 1, "maxLength": 100},
            "location": {
                "type": "string",
                "description": "The location/address of the restaurant",
                "minLength": 1,
                "maxLength": 200,
            },
            "foodType": {
                "type": "string",
                "description": "The type of food served (e.g., Italian, Mexican, Thai, etc.)",
                "minLength": 1,
                "maxLength": 50,
            },
        },
        "required": ["name", "location", "foodType"],
        "additionalProperties": False,
    }

    async def execute(self, arguments: dict) -> Any:
        restaurant = self.catalog.add(
            name=_require_text(arguments, "name", 100),
            location=_require_text(arguments, "location", 200),
            food_type=_require_text(arguments, "foodType", 50),
        )
        return {"message": f"Added {restaurant['name']} to the lunch options.", "restaurant": restaurant}


class PickRandomRestaurantTool(CatalogTool):
    name = "pick_random_restaurant"
    description = "Pick a random restaurant from the available options for lunch."

    async def execute(self, arguments: dict) -> Any:
        restaurant = self.catalog.pick_random()
        if restaurant is None:
            raise ToolExecutionError("No restaurants available. Add some restaurants first!")
        return {"message": f"Today's lunch pick: {restaurant['name']}", "restaurant": restaurant}


class GetVisitStatisticsTool(CatalogTool):
    name = "get_visit_statistics"
    description = "Get statistics about how many times each restaurant has been visited."

    async def execute(self, arguments: dict) -> Any:
        stats = self.catalog.visit_statistics()
        return {
            "statistics": stats,
            "totalVisits": sum(s["visitCount"] for s in stats),
            "totalRestaurants": len(stats),
        }


# ── Streaming tools ───────────────────────────────────────────────────────────

class GetRestaurantsStreamTool(CatalogStreamingTool):
    name = "get_restaurants_stream"
    description = "Stream a list of all restaurants progressively with real-time loading."

    async def stream(self, arguments: dict) -> AsyncIterator[Any]:
        for i, restaurant in enumerate(self.catalog.all(), start=1):
            await asyncio.sleep(self.item_delay)
            yield {"type": "text", "text": f"{i}. {_describe(restaurant)}", "restaurant": restaurant}


class SearchRestaurantsStreamTool(CatalogStreamingTool):
    name = "search_restaurants_stream"
    description = "Stream real-time search results for restaurants based on query criteria."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query for restaurant name, location, or cuisine type",
                "minLength": 1,
                "maxLength": 100,
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    }

    async def stream(self, arguments: dict) -> AsyncIterator[Any]:
        query = _require_text(arguments, "query", 100)
        matches = self.catalog.search(query)
        for i, restaurant in enumerate(matches, start=1):
            await asyncio.sleep(self.item_delay)
            yield {"type": "text", "text": f"Match {i}: {_describe(restaurant)}", "restaurant": restaurant}
        yield {
            "type": "text",
            "text": f"Search complete: {len(matches)} restaurant(s) matching '{query}'",
            "matches": len(matches),
        }


class AnalyzeRestaurantsStreamTool(CatalogStreamingTool):
    name = "analyze_restaurants_stream"
    description = "Stream progressive analysis of restaurant data including cuisine distribution and insights."
    input_schema = {
        "type": "object",
        "properties": {
            "type": {
                "type": "string",
                "description": "Type of analysis to perform (general, cuisine, location)",
                "enum": ["general", "cuisine", "location"],
                "default": "general",
            },
        },
        "required": [],
        "additionalProperties": False,
    }

    STEPS = (
        "Analyzing restaurant data...",
        "Computing cuisine distribution...",
        "Mapping location clusters...",
        "Calculating popularity metrics...",
        "Generating insights...",
    )

    async def stream(self, arguments: dict) -> AsyncIterator[Any]:
        analysis = arguments.get("type") or "general"
        if analysis not in ("general", "cuisine", "location"):
            raise ToolExecutionError(f"Unknown analysis type: {analysis}")

        for step in self.STEPS:
            yield {"type": "text", "text": step}
            await asyncio.sleep(self.item_delay)

        restaurants = self.catalog.all()
        field = "location" if analysis == "location" else "foodType"
        distribution = Counter(r[field] for r in restaurants)
        lines = "\n".join(f"- {key}: {count} restaurant(s)" for key, count in distribution.most_common())
        yield {
            "type": "text",
            "text": (
                f"{analysis.upper()} ANALYSIS RESULTS\n\n{lines}\n\n"
                f"Total Restaurants: {len(restaurants)}\nUnique Values: {len(distribution)}"
            ),
            "distribution": dict(distribution),
        }


# ── Registry builders ─────────────────────────────────────────────────────────

TOOL_CLASSES = (GetRestaurantsTool, AddRestaurantTool, PickRandomRestaurantTool, GetVisitStatisticsTool)
STREAMING_TOOL_CLASSES = (GetRestaurantsStreamTool, SearchRestaurantsStreamTool, AnalyzeRestaurantsStreamTool)


def build_tool_registry(catalog: RestaurantCatalog, item_delay: float = 0.2) -> ToolRegistry:
    registry = ToolRegistry([cls(catalog) for cls in TOOL_CLASSES])
    for cls in STREAMING_TOOL_CLASSES:
        registry.register(cls(catalog, item_delay=item_delay))
    return registry


def build_prompt_registry() -> PromptRegistry:
    return PromptRegistry([
        Prompt(
            name="lunch_decision_helper",
            description="Get help deciding where to go for lunch based on your preferences and mood.",
            result_description="A personalized lunch decision helper based on your mood and preferences",
            arguments=[
                PromptArgument(name="mood", description="Your current mood (e.g., adventurous, comfort, healthy, quick)"),
                PromptArgument(name="dietary_restrictions", description="Any dietary restrictions or preferences"),
            ],
            defaults={"mood": "undecided", "dietary_restrictions": "none"},
            template=(
                "I need help deciding where to go for lunch today!\n\n"
                "Current Mood: {mood}\nDietary Restrictions: {dietary_restrictions}\n\n"
                "Please help me by:\n"
                "1. First, showing me all available restaurants\n"
                "2. Then, picking a random restaurant that might match my mood\n"
                "3. Finally, showing me the visit statistics to see if I should try somewhere new"
            ),
        ),
        Prompt(
            name="restaurant_explorer",
            description="Explore restaurant options and get detailed information about different cuisines.",
            result_description="Explore and discover restaurant options based on cuisine preferences",
            arguments=[PromptArgument(name="cuisine_type", description="Type of cuisine you're interested in exploring")],
            defaults={"cuisine_type": "any type"},
            template=(
                "I want to explore the lunch options available to me! "
                "I'm particularly interested in {cuisine_type} of cuisine.\n\n"
                "Please help me by:\n"
                "1. Showing me all available restaurants with detailed information\n"
                "2. Highlighting restaurants that match my cuisine preference\n"
                "3. Providing visit statistics so I can see which places I haven't tried yet"
            ),
        ),
        Prompt(
            name="lunch_planning",
            description="Plan your lunch schedule and track your restaurant visits over time.",
            result_description="Plan and analyze your lunch patterns and restaurant visits",
            template=(
                "I want to analyze and plan my lunch habits! Please help me by:\n\n"
                "1. Showing me comprehensive visit statistics for all restaurants\n"
                "2. Identifying restaurants I haven't visited yet or haven't been to in a while\n"
                "3. Displaying all available restaurant options with their details\n"
                "4. Suggesting a strategy for trying new places or revisiting favorites"
            ),
        ),
        Prompt(
            name="add_new_restaurant",
            description="Get guided help to add a new restaurant to your lunch options.",
            result_description="Get guided assistance for adding new restaurants to your lunch options",
            template=(
                "I want to add a new restaurant to my lunch options! Please help me by:\n\n"
                "1. Explaining what information I need to provide (name, location, food type)\n"
                "2. Guiding me through the process of adding the restaurant\n"
                "3. After adding, displaying the updated list of restaurants"
            ),
        ),
    ])


def build_resource_registry(catalog: RestaurantCatalog) -> ResourceRegistry:
    return ResourceRegistry([
        Resource(
            uri="lunch://restaurants",
            name="restaurants",
            description="All restaurants in the lunch catalog",
            reader=catalog.all,
        ),
    ])
