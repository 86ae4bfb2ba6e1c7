from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field

from movie_tracker.core.tmdb import TMDBClient


class SearchArgs(BaseModel):
    query: str = Field(description="Title or keywords to search for")
    type: Literal["movie", "tv"] = Field(description="movie for films, tv for series")


class TitleArgs(BaseModel):
    id: int = Field(description="TMDB ID")
    type: Literal["movie", "tv"] = Field(description="movie or tv")


class PersonSearchArgs(BaseModel):
    name: str = Field(description="Full or partial name of the person")


class PersonCreditsArgs(BaseModel):
    personId: int = Field(description="TMDB person ID")
    type: Literal["movie", "tv", "both"] = Field(description="movie, tv, or both")


@dataclass(frozen=True)
class ChatTool:
    """A function the assistant may call, with a pydantic model for its arguments."""

    name: str
    description: str
    params: type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]

    def openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.params.model_json_schema(),
            },
        }

    async def run(self, raw_arguments: str | None) -> Any:
        args = self.params.model_validate(json.loads(raw_arguments or "{}"))
        return await self.handler(args)


def build_catalog_tools(tmdb: TMDBClient) -> list[ChatTool]:
    async def search(a: SearchArgs) -> Any:
        return await tmdb.search(a.query, a.type)

    async def details(a: TitleArgs) -> Any:
        return await tmdb.details_summary(a.id, a.type)

    async def similar(a: TitleArgs) -> Any:
        return await tmdb.similar(a.id, a.type)

    async def recommendations(a: TitleArgs) -> Any:
        return await tmdb.recommendations(a.id, a.type)

    async def search_person(a: PersonSearchArgs) -> Any:
        return await tmdb.search_person(a.name)

    async def person_credits(a: PersonCreditsArgs) -> Any:
        return await tmdb.person_credits(a.personId, a.type)

    return [
        ChatTool(
            "searchTMDB",
            "Search for movies or TV series on TMDB by name. Use this to find TMDB IDs.",
            SearchArgs,
            search,
        ),
        ChatTool(
            "getTMDBDetails",
            "Get full details (genres, cast, overview, runtime) for a movie or TV series by TMDB ID.",
            TitleArgs,
            details,
        ),
        ChatTool(
            "getSimilar",
            "Get movies or series similar to a given title (by TMDB ID). "
            "Good for franchise/sequel exploration.",
            TitleArgs,
            similar,
        ),
        ChatTool(
            "getRecommendations",
            "Get TMDB recommendations based on a movie or series.",
            TitleArgs,
            recommendations,
        ),
        ChatTool(
            "searchPerson",
            "Search for an actor, director, or other person by name on TMDB. "
            "Returns their TMDB person ID and known-for titles.",
            PersonSearchArgs,
            search_person,
        ),
        ChatTool(
            "getPersonCredits",
            "Get the movie and/or TV credits for a person by their TMDB person ID.",
            PersonCreditsArgs,
            person_credits,
        ),
    ]
