"""
User-facing progress output, memory monitoring and profiling.

Progress goes to stderr so command output on stdout stays machine-readable.
"""

import cProfile
import io
import os
import pstats
import sys
import time
from typing import Any, Dict, Optional

import psutil
from colorama import Fore, Style
from colorama import init as colorama_init
from tqdm import tqdm

colorama_init(autoreset=True)


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0
        self._process = psutil.Process(os.getpid())

    def check_memory(self) -> float:
        """Get current memory usage in MB, raising MemoryError above the limit"""
        memory_mb = self._process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


class ProfilingContext:
    """Context manager for performance profiling"""

    def __init__(
        self, enabled: bool = False, output_path: Optional[str] = None, stream=None
    ):
        self.enabled = enabled
        self.output_path = output_path
        self.stream = stream or sys.stderr
        self.profiler = None

    def __enter__(self):
        if self.enabled:
            self.profiler = cProfile.Profile()
            self.profiler.enable()
        return self

    def __exit__(self, *args):
        if self.enabled and self.profiler:
            self.profiler.disable()

            if self.output_path:
                self.profiler.dump_stats(self.output_path)

            s = io.StringIO()
            ps = pstats.Stats(self.profiler, stream=s)
            ps.strip_dirs()
            ps.sort_stats("cumulative")
            ps.print_stats(20)
            print(f"\n{'=' * 70}", file=self.stream)
            print("PERFORMANCE PROFILE (Top 20 functions by cumulative time)", file=self.stream)
            print(f"{'=' * 70}", file=self.stream)
            print(s.getvalue(), file=self.stream)


class ProgressReporter:
    """
    Interactive progress reporting
    - Color-coded output (colorama)
    - Progress bars with rate and elapsed time (tqdm)
    """

    def __init__(
        self,
        quiet: bool = False,
        verbose: bool = False,
        use_colors: bool = True,
        stream=None,
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.stream = stream or sys.stderr
        self.start_time = time.time()
        self.stage_times: Dict[str, float] = {}

    def _colorize(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def _print(self, text: str = ""):
        print(text, file=self.stream)

    def stage_start(self, stage_name: str, message: str = ""):
        """Mark the start of a processing stage"""
        if self.quiet:
            return
        self.stage_times[stage_name] = time.time()

        separator = self._colorize("=" * 70, Fore.CYAN)
        stage_text = self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT)

        self._print(f"\n{separator}")
        self._print(stage_text)
        if message:
            self._print(f"   {message}")
        self._print(separator)

    def stage_complete(self, stage_name: str, stats: Optional[Dict[str, Any]] = None):
        """Mark completion of a processing stage"""
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())

        self._print(
            self._colorize(
                f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
            )
        )

        if stats and self.verbose:
            for key, value in stats.items():
                self._print(f"   {key}: {value}")

    def create_progress_bar(
        self, total: Optional[int] = None, desc: str = "Indexing"
    ) -> Optional[tqdm]:
        """Progress bar for commit streams; total may be unknown"""
        if self.quiet:
            return None

        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=" commits",
            ncols=100,
            file=self.stream,
            leave=False,
        )

    def info(self, message: str):
        if not self.quiet:
            self._print(f"{self._colorize('ℹ️  ', Fore.BLUE)}{message}")

    def warning(self, message: str):
        if not self.quiet:
            self._print(f"{self._colorize('⚠️  ', Fore.YELLOW + Style.BRIGHT)}{message}")

    def error(self, message: str):
        """Display error message (always shown)"""
        self._print(self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT))

    def success(self, message: str):
        if not self.quiet:
            self._print(self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT))

    def summary(self, stats: Dict[str, Any]):
        """Display final summary"""
        if self.quiet:
            return
        elapsed = time.time() - self.start_time

        separator = self._colorize("=" * 70, Fore.CYAN)
        header = self._colorize("📊 INDEX SUMMARY", Fore.MAGENTA + Style.BRIGHT)

        self._print(f"\n{separator}")
        self._print(header)
        self._print(separator)
        for key, value in stats.items():
            self._print(f"   {key}: {value}")

        self._print(f"\n{self._colorize(f'⏱️  Total time: {elapsed:.2f}s', Fore.YELLOW)}")
        self._print(f"{separator}\n")
