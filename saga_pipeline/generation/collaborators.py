"""Interfaces to the external text and image generators.

The worker only sees these two calls; prompt construction, model choice and
game-data fetching live behind them.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from saga_pipeline.sagas.models import Panel


class PageDraft(BaseModel):
    """A page whose text is written but whose image is not yet rendered."""
    page_number: int
    panels: List[Panel] = Field(default_factory=list)
    image_prompt: str = ""
    page_description: Optional[str] = None


class StoryDraft(BaseModel):
    """Output of the text stage."""
    title: str
    pages: List[PageDraft]
    cost_usd: float = 0.0

    @property
    def total_panels(self) -> int:
        return sum(len(page.panels) for page in self.pages)


class RenderedPage(BaseModel):
    url: str
    cost_usd: float = 0.0


class SagaGenerator(ABC):
    """Abstract text + image generator used by the worker."""

    @abstractmethod
    async def generate_story(self, source_id: str) -> StoryDraft:
        """Fetch the source history and write the narrative, split into pages."""
        ...

    @abstractmethod
    async def render_page(self, page: PageDraft, seed: int) -> RenderedPage:
        """Render one page image. ``seed`` keeps the character consistent."""
        ...


def character_seed(source_id: str) -> int:
    """Stable non-negative seed from a 32-bit string hash of the source id."""
    h = 0
    for ch in source_id:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class StaticSagaGenerator(SagaGenerator):
    """Deterministic generator for local runs and tests.

    Produces ``pages`` pages of ``panels_per_page`` placeholder panels and
    image URLs derived from the seed; it never calls out.
    """

    def __init__(
        self,
        pages: int = 5,
        panels_per_page: int = 4,
        image_base_url: str = "https://images.invalid/sagas",
    ):
        self._pages = pages
        self._panels_per_page = panels_per_page
        self._image_base_url = image_base_url.rstrip("/")

    async def generate_story(self, source_id: str) -> StoryDraft:
        pages = []
        for page_number in range(1, self._pages + 1):
            first = (page_number - 1) * self._panels_per_page + 1
            panels = [
                Panel(
                    panel_number=n,
                    narration=f"Chapter {page_number}, beat {n - first + 1} of {source_id}",
                    image_prompt=f"scene {n} of {source_id}",
                    scene_type="discovery",
                    mood="mysterious",
                )
                for n in range(first, first + self._panels_per_page)
            ]
            pages.append(
                PageDraft(
                    page_number=page_number,
                    panels=panels,
                    image_prompt=f"comic page {page_number} of {source_id}",
                )
            )
        return StoryDraft(title=f"The Journey of {source_id}", pages=pages, cost_usd=0.03)

    async def render_page(self, page: PageDraft, seed: int) -> RenderedPage:
        return RenderedPage(
            url=f"{self._image_base_url}/{seed}/page-{page.page_number}.png",
            cost_usd=0.012,
        )
