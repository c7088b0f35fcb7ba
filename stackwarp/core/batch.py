"""
Batch transformation of an image sequence

Pairs the sorted source images with the sorted transform descriptors, builds
one transform mesh per pair and renders every pair on a worker pool. Pairs
share no mutable state; each writes its own output file.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..utils.config import BatchConfig
from ..utils.image_io import ImageIO
from ..utils.memory_manager import MemoryManager
from .descriptor import TransformDescriptorParser
from .errors import (
    ConfigError,
    CountMismatchError,
    ImageReadError,
    OutputError,
    ParseError,
    RangeError,
)
from .mapping import PixelMapper, place_in_frame
from .mesh import Mesh, MeshBuilder, WorldBoundingBox
from .transforms import CompositeTransform

logger = logging.getLogger(__name__)

# Rough peak bytes per output pixel and channel (float64 sampling buffers)
_BYTES_PER_SAMPLE = 8


@dataclass
class PairJob:
    """One (image, transform) pair scheduled for rendering"""

    index: int
    source_path: Path
    transform_path: Path
    output_path: Path
    transform: CompositeTransform
    mesh: Optional[Mesh] = None
    bbox: Optional[WorldBoundingBox] = None


@dataclass(frozen=True)
class PairResult:
    """Written output of one pair"""

    index: int
    source_name: str
    output_path: Path
    bbox: WorldBoundingBox


def check_range(first: int, last: int, count: int) -> None:
    """
    Validate a [first, last) sub-range of a paired listing

    Raises:
        RangeError: ``first < 0``, ``first > last`` or ``last >= count``
    """
    if first < 0 or first > last or last >= count:
        raise RangeError(first, last, count)


class BatchDriver:
    """Transforms a stack of images with per-image transform descriptors"""

    def __init__(
        self,
        config: BatchConfig,
        image_io: Optional[ImageIO] = None,
        parser: Optional[TransformDescriptorParser] = None,
        progress_callback: Optional[Callable[[int, str], None]] = None,
        cancel_flag: Optional[Callable[[], bool]] = None,
        memory_manager: Optional[MemoryManager] = None
    ):
        """
        Args:
            config: Batch settings
            image_io: File-system collaborator
            parser: Transform descriptor parser
            progress_callback: Called with (percentage, message)
            cancel_flag: Returns True to stop before the next pair
            memory_manager: Sizes the worker pool when config.max_workers is None
        """
        self.config = config.validate()
        self.image_io = image_io or ImageIO()
        self.parser = parser or TransformDescriptorParser()
        self.progress_callback = progress_callback
        self.cancel_flag = cancel_flag
        self.memory_manager = memory_manager or MemoryManager()
        self.mesh_builder = MeshBuilder()
        self.mapper = PixelMapper(background=0)

    def _check_cancel(self):
        """Check if operation should be cancelled"""
        if self.cancel_flag and self.cancel_flag():
            raise InterruptedError("Transformation cancelled")

    def _update_progress(self, percentage: int, message: str = ""):
        """Update progress callback"""
        if self.progress_callback:
            self.progress_callback(percentage, message)

    def list_pairs(self) -> Tuple[List[str], List[str]]:
        """
        Sorted source image and transform descriptor names

        Raises:
            ConfigError: A directory does not exist
            CountMismatchError: The two listings differ in length
        """
        cfg = self.config
        try:
            src_names = self.image_io.list_files(cfg.source_dir, cfg.source_extensions)
            transf_names = self.image_io.list_files(cfg.transform_dir, (cfg.transform_extension,))
        except FileNotFoundError as e:
            raise ConfigError(str(e)) from e

        if len(src_names) != len(transf_names):
            logger.error(
                f"The number of source and transform files must be equal "
                f"({len(src_names)} in {cfg.source_dir}, {len(transf_names)} in {cfg.transform_dir})"
            )
            raise CountMismatchError(len(src_names), len(transf_names))
        return src_names, transf_names

    def select_indices(self, count: int) -> range:
        if self.config.range is None:
            return range(count)
        first, last = self.config.range
        try:
            check_range(first, last, count)
        except RangeError:
            logger.error(f"Error: wrong indexes ({first}<->{last})")
            raise
        return range(first, last)

    def run(self) -> List[PairResult]:
        """
        Transform the selected pairs and write the results

        Returns:
            One result per written image, in sorted-index order

        Raises:
            ConfigError, CountMismatchError, RangeError: Nothing is written
            ParseError: A descriptor is invalid or yields an unusable mesh;
                nothing is written
            ImageReadError, OutputError: Pairs already written stay on disk
            InterruptedError: cancel_flag was raised
        """
        start = time.time()
        cfg = self.config
        self._update_progress(0, "Listing source and transform files...")

        src_names, transf_names = self.list_pairs()
        indices = self.select_indices(len(src_names))
        logger.info(
            f"Transforming {len(indices)} of {len(src_names)} images "
            f"(interpolate: {cfg.interpolate}, mesh resolution: {cfg.mesh_resolution})"
        )

        self._update_progress(5, "Reading transforms...")
        jobs = self._read_transforms(indices, src_names, transf_names)
        if not jobs:
            logger.warning("No images selected, nothing to do")
            self._update_progress(100, "Done")
            return []

        self._update_progress(10, "Building transform meshes...")
        frame = self._plan(jobs)

        try:
            cfg.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputError(f"Could not create output directory {cfg.output_dir}: {e}", path=str(cfg.output_dir))

        results = self._render(jobs, frame)
        self.memory_manager.log_memory_status("after rendering")
        logger.info(f"Transformed {len(results)} images in {time.time() - start:.1f}s")
        self._update_progress(100, "Done")
        return results

    def _read_transforms(self, indices: range, src_names: List[str], transf_names: List[str]) -> List[PairJob]:
        cfg = self.config
        # Every descriptor is decoded, so a bad file anywhere aborts the batch
        transforms = []
        for i, name in enumerate(transf_names):
            transform_path = cfg.transform_dir / name
            try:
                transforms.append(self.parser.parse(transform_path))
            except ParseError as e:
                logger.error(f"Error when reading transform from file: {transform_path} (pair {i})")
                e.index = i
                raise

        jobs = []
        outputs = {}
        for i in indices:
            output_name = Path(src_names[i]).stem + cfg.output_extension
            if output_name in outputs:
                raise OutputError(
                    f"Sources {src_names[outputs[output_name]]} and {src_names[i]} "
                    f"would both be written to {output_name}",
                    path=output_name, index=i
                )
            outputs[output_name] = i
            jobs.append(PairJob(
                index=i,
                source_path=cfg.source_dir / src_names[i],
                transform_path=cfg.transform_dir / transf_names[i],
                output_path=cfg.output_dir / output_name,
                transform=transforms[i],
            ))
        return jobs

    def _plan(self, jobs: List[PairJob]) -> Optional[WorldBoundingBox]:
        """Build every mesh and return the common frame, if enabled"""
        frame = None
        for job in jobs:
            self._check_cancel()
            try:
                width, height = self.image_io.read_image_size(job.source_path)
            except (OSError, ValueError) as e:
                raise ImageReadError(
                    f"Could not read image {job.source_path} (pair {job.index}): {e}",
                    path=str(job.source_path), index=job.index
                ) from e
            try:
                job.mesh, job.bbox = self.mesh_builder.build(
                    job.transform, width, height, self.config.mesh_resolution
                )
            except ValueError as e:
                raise ParseError(
                    f"transform cannot be applied to pair {job.index}: {e}",
                    path=str(job.transform_path), index=job.index
                ) from e
            if self.config.common_frame:
                frame = job.bbox if frame is None else frame.union(job.bbox)

        if frame is not None:
            logger.info(f"Common frame: origin ({frame.x}, {frame.y}), size {frame.width}x{frame.height}")
        return frame

    def _worker_count(self, jobs: List[PairJob], frame: Optional[WorldBoundingBox]) -> int:
        if self.config.max_workers:
            return min(self.config.max_workers, len(jobs))
        largest = max(
            job.mesh.width * job.mesh.height + (frame or job.bbox).width * (frame or job.bbox).height
            for job in jobs
        )
        # Assume up to 4 channels
        per_task = largest * 4 * _BYTES_PER_SAMPLE
        return min(self.memory_manager.suggest_workers(per_task), len(jobs))

    def _render(self, jobs: List[PairJob], frame: Optional[WorldBoundingBox]) -> List[PairResult]:
        n_workers = self._worker_count(jobs, frame)
        logger.info(f"Rendering {len(jobs)} images with {n_workers} worker(s)")

        results = []
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            # Submitted and collected in sorted order for reproducible logs
            futures: List[Tuple[PairJob, Future]] = [
                (job, executor.submit(self._process_pair, job, frame)) for job in jobs
            ]
            try:
                for done, (job, future) in enumerate(futures, start=1):
                    results.append(future.result())
                    progress = 10 + int(90 * done / len(jobs))
                    self._update_progress(progress, f"Transformed image {done}/{len(jobs)}: {job.source_path.name}")
            except BaseException:
                for _, future in futures:
                    future.cancel()
                raise
        return results

    def _process_pair(self, job: PairJob, frame: Optional[WorldBoundingBox]) -> PairResult:
        self._check_cancel()
        cfg = self.config

        try:
            image = self.image_io.read_image(job.source_path)
        except (OSError, ValueError) as e:
            raise ImageReadError(
                f"Could not read image {job.source_path} (pair {job.index}): {e}",
                path=str(job.source_path), index=job.index
            ) from e

        h, w = image.shape[:2]
        if (w, h) != (job.mesh.width, job.mesh.height):
            raise ImageReadError(
                f"Image {job.source_path} is {w}x{h}, header reported "
                f"{job.mesh.width}x{job.mesh.height} (pair {job.index})",
                path=str(job.source_path), index=job.index
            )

        mapped = self.mapper.map(job.mesh, image, interpolate=cfg.interpolate, bbox=job.bbox)
        if frame is not None:
            mapped = place_in_frame(mapped, job.bbox, frame)

        try:
            self.image_io.write_image(job.output_path, mapped)
        except (OSError, ValueError) as e:
            logger.error(f"Error when creating transformed image {job.output_path}: {e}")
            raise OutputError(
                f"Could not write {job.output_path} (pair {job.index}): {e}",
                path=str(job.output_path), index=job.index
            ) from e

        logger.debug(f"[{job.index}] {job.source_path.name} -> {job.output_path.name} ({mapped.shape[1]}x{mapped.shape[0]})")
        return PairResult(job.index, job.source_path.name, job.output_path, job.bbox)


def transform_stack(
    source_dir,
    output_dir,
    transform_dir,
    interpolate: bool = True,
    first: Optional[int] = None,
    last: Optional[int] = None,
    **options
) -> bool:
    """
    Transform a folder of images with a folder of transform descriptors

    Args:
        source_dir: Folder with input images
        output_dir: Folder for the transformed images
        transform_dir: Folder with one descriptor per image
        interpolate: Bilinear sampling if True
        first: Start of the sorted-index sub-range
        last: End of the sub-range, exclusive
        **options: Further BatchConfig settings

    Returns:
        True once every selected image has been written; failures raise
    """
    config = BatchConfig(
        source_dir=source_dir,
        output_dir=output_dir,
        transform_dir=transform_dir,
        interpolate=interpolate,
        first=first,
        last=last,
        **options
    )
    BatchDriver(config).run()
    return True
