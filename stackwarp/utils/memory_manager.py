"""
Memory-aware sizing of the batch worker pool
"""

import logging
import os
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 * 1024 * 1024


class MemoryManager:
    """Estimate how many images can be transformed concurrently"""

    def __init__(self, memory_limit_gb: Optional[float] = None):
        """
        Initialize memory manager

        Args:
            memory_limit_gb: Memory budget in GB (None = available system memory)
        """
        self.memory_limit_gb = memory_limit_gb

    def get_available_memory(self) -> float:
        """
        Get available system memory in GB

        Returns:
            Available memory in GB
        """
        return psutil.virtual_memory().available / BYTES_PER_GB

    def get_memory_usage(self) -> float:
        """Get resident memory of this process in GB"""
        return psutil.Process().memory_info().rss / BYTES_PER_GB

    def budget_gb(self) -> float:
        available = self.get_available_memory()
        if self.memory_limit_gb:
            return min(available, self.memory_limit_gb)
        return available

    def suggest_workers(self, bytes_per_task: int, max_workers: Optional[int] = None) -> int:
        """
        Number of concurrent tasks that fit in memory

        Args:
            bytes_per_task: Estimated peak memory of one task
            max_workers: Upper bound (None = CPU count)

        Returns:
            Worker count, at least 1
        """
        cpu_limit = max_workers or os.cpu_count() or 1
        # Keep 20% buffer for safety
        budget = self.budget_gb() * BYTES_PER_GB * 0.8
        memory_limit = int(budget // max(1, bytes_per_task))
        workers = max(1, min(cpu_limit, memory_limit))
        logger.debug(
            f"Worker pool: {workers} (cpu limit {cpu_limit}, memory limit {memory_limit}, "
            f"{bytes_per_task / 1024 / 1024:.1f} MB per task)"
        )
        return workers

    def log_memory_status(self, context: str = ""):
        usage = self.get_memory_usage()
        available = self.get_available_memory()
        context_str = f" ({context})" if context else ""
        logger.info(f"Memory status{context_str}: used={usage:.2f}GB, available={available:.2f}GB")

