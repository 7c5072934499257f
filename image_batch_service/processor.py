"""
Per-product image processing.

Every image location of a product is fetched, recompressed and stored as an
independent task. Results are collected by position, so `outputImageRefs[i]`
always belongs to `inputImageRefs[i]` whatever order the fetches finish in.
A failed image leaves a `None` sentinel in its slot and never stops the
other images of the product.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import List, Optional

from .errors import IMAGE_ERRORS, ImageBatchError
from .fetcher import ImageFetcher
from .models import Product
from .transformer import ImageTransformer

logger = logging.getLogger(__name__)


@dataclass
class ImageOutcome:
    index: int
    input_ref: str
    output_ref: Optional[str] = None
    error: Optional[ImageBatchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProductProcessor:
    def __init__(self, fetcher: ImageFetcher, transformer: ImageTransformer) -> None:
        if transformer.sink is None:
            raise ValueError("ProductProcessor needs a transformer with a storage sink")
        self.fetcher = fetcher
        self.transformer = transformer

    async def process(self, product: Product, concurrency: int = 4) -> Product:
        """
        Attempt every image of `product` exactly once.

        Returns a copy of the product with `outputImageRefs`, `imageErrors` and
        `hasPartialFailure` filled in; the input product is left untouched.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        tasks = [
            self._process_image(semaphore, index, ref)
            for index, ref in enumerate(product.inputImageRefs)
        ]
        outcomes: List[ImageOutcome] = list(await asyncio.gather(*tasks))

        result = product.model_copy(deep=True)
        result.outputImageRefs = [o.output_ref for o in outcomes]
        result.imageErrors = [o.error.code if o.error else None for o in outcomes]
        result.hasPartialFailure = any(not o.ok for o in outcomes)
        return result

    async def _process_image(self, semaphore: asyncio.Semaphore, index: int, ref: str) -> ImageOutcome:
        outcome = ImageOutcome(index=index, input_ref=ref)
        async with semaphore:
            try:
                data = await self.fetcher.fetch(ref)
                output = await asyncio.to_thread(self.transformer.transform, data)
            except IMAGE_ERRORS as exc:
                logger.warning("image %d (%s) failed: %s", index, ref, exc.code)
                outcome.error = exc
                return outcome
        outcome.output_ref = str(output)
        return outcome
