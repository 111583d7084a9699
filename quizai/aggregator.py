from __future__ import annotations

import inspect
import logging
import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Union

from .detector import looks_like_formatted_quiz
from .errors import EmptyContentError, ExtractionFailure, UnsupportedFileKind
from .extraction import ImagePayload, detect_kind, encode_image, image_mime_type
from .sources import FilesInput, PastedTextInput, PromptInput, SessionGuard, SourceFile, SourceInput

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Generated Quiz"

Payload = Union[str, ImagePayload]


class Extractor(Protocol):
    async def extract_pdf(self, data: bytes) -> str: ...

    async def extract_docx(self, data: bytes) -> str: ...

    async def read_plain_text(self, data: bytes) -> str: ...

    async def ocr_image(self, image: ImagePayload) -> Optional[str]: ...


Detector = Callable[[str], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class ExtractedUnit:
    file_name: str
    text: str


@dataclass(frozen=True)
class AggregatedContent:
    payload: Payload
    looks_preformatted: bool
    title_suggestion: str
    units: List[ExtractedUnit] = field(default_factory=list)
    image: Optional[ImagePayload] = None

    @property
    def is_image(self) -> bool:
        return isinstance(self.payload, ImagePayload)


def format_units(units: Sequence[ExtractedUnit]) -> str:
    return "".join(f"=== [{u.file_name}] ===\n\n{u.text}\n\n" for u in units).strip()


def _base_name(file_name: str) -> str:
    base = os.path.basename((file_name or "").replace("\\", "/"))
    stem, _ext = os.path.splitext(base)
    return stem or base


def common_title_prefix(file_names: Sequence[str]) -> str:
    """
    Longest common literal prefix of the base names, with trailing
    separators removed: physics_ch1.pdf, physics_ch2.pdf -> "physics_ch".
    """
    names = [_base_name(n) for n in file_names]
    if not names:
        return ""
    prefix = os.path.commonprefix(names)
    end = len(prefix)
    while end > 0 and not prefix[end - 1].isalnum():
        end -= 1
    return prefix[:end]


def suggest_title(source: SourceInput) -> str:
    if isinstance(source, FilesInput) and len(source.files) > 1:
        return common_title_prefix([f.name for f in source.files]) or FALLBACK_TITLE
    return FALLBACK_TITLE


class ContentAggregator:
    """
    Turns the active SourceInput into one generation payload.

    Files are handled one at a time in the order given; the next file is not
    touched until the previous one is fully resolved, so the section order of
    the payload is the input order.
    """

    def __init__(self, extractor: Extractor, detector: Detector = looks_like_formatted_quiz) -> None:
        self.extractor = extractor
        self.detector = detector

    async def aggregate(self, source: SourceInput, guard: Optional[SessionGuard] = None) -> AggregatedContent:
        if isinstance(source, FilesInput):
            payload, units, image = await self._aggregate_files(source.files, guard)
        elif isinstance(source, (PastedTextInput, PromptInput)):
            payload = (source.text or "").strip()
            if not payload:
                raise EmptyContentError("Please paste some text or enter a prompt first.")
            units, image = [], None
        else:
            raise TypeError(f"Unknown source input: {type(source).__name__}")

        looks_preformatted = False
        if isinstance(payload, str):
            looks_preformatted = await self._detect(payload)
            if guard is not None:
                guard.check()

        return AggregatedContent(
            payload=payload,
            looks_preformatted=looks_preformatted,
            title_suggestion=suggest_title(source),
            units=units,
            image=image,
        )

    async def _aggregate_files(self, files: Sequence[SourceFile], guard: Optional[SessionGuard]):
        if not files:
            raise EmptyContentError("Please choose at least one file.")

        kinds = []
        for f in files:
            kind = detect_kind(f.name, f.mime_type)
            if kind is None:
                raise UnsupportedFileKind(f.name, f.mime_type)
            kinds.append(kind)

        single_image = len(files) == 1 and kinds[0] == "image"
        units: List[ExtractedUnit] = []
        image: Optional[ImagePayload] = None

        for f, kind in zip(files, kinds):
            try:
                if kind == "image":
                    img = encode_image(f.data, image_mime_type(f.name, f.mime_type))
                    text = await self._ocr(f, img, required=not single_image)
                    if single_image:
                        image = img
                else:
                    text = await self._extract(f, kind)
            except ExtractionFailure:
                # a superseded intake reports staleness, not its own failure
                if guard is not None:
                    guard.check()
                raise
            if guard is not None:
                guard.check()

            if text:
                units.append(ExtractedUnit(file_name=f.name, text=text))
            logger.debug("intake_file_done file=%s kind=%s chars=%d", f.name, kind, len(text or ""))

        if single_image and not units:
            logger.info("intake_image_payload file=%s mime=%s", files[0].name, image.mime_type)
            return image, units, image

        return format_units(units), units, image

    async def _extract(self, f: SourceFile, kind: str) -> str:
        try:
            if kind == "pdf":
                text = await self.extractor.extract_pdf(f.data)
            elif kind == "docx":
                text = await self.extractor.extract_docx(f.data)
            else:
                text = await self.extractor.read_plain_text(f.data)
        except Exception as e:
            logger.warning("intake_extract_failed file=%s kind=%s error=%s", f.name, kind, e)
            raise ExtractionFailure(f.name, str(e)) from e

        text = (text or "").strip()
        if not text:
            raise ExtractionFailure(f.name, "No text found (scanned documents need to be uploaded as images).")
        return text

    async def _ocr(self, f: SourceFile, img: ImagePayload, required: bool) -> str:
        try:
            text = (await self.extractor.ocr_image(img) or "").strip()
        except Exception as e:
            if required:
                logger.warning("intake_ocr_failed file=%s error=%s", f.name, e)
                raise ExtractionFailure(f.name, str(e)) from e
            logger.warning("intake_ocr_failed file=%s error=%s fallback=image", f.name, e)
            return ""
        if not text and required:
            raise ExtractionFailure(f.name, "The AI could not read any text in this image.")
        return text

    async def _detect(self, text: str) -> bool:
        try:
            result = self.detector(text)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            logger.warning("format_detector_failed error=%s", e)
            return False
