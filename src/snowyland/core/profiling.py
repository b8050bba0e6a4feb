"""
Profiling helpers for the benchmark driver.

* ``profile_compute``: runs a function under ``cProfile`` and turns the
  caller graph into a flame graph tree (time per call path).
* ``profile_allocations``: runs a function under ``tracemalloc`` and builds a
  flame graph tree from the allocation tracebacks (bytes per call path).
* ``write_flame_html``: renders either tree as a standalone HTML file.
* ``profile_gpu``: runs a function inside ``cupyx.profiler.profile()`` so an
  attached CUDA profiler only records the solve.
* ``memory_tracker``: prints the resident memory before and after a call.
"""

import cProfile
import functools
import html
import os
import pstats
import tracemalloc
import psutil

MODULE_NAME = "snowyland.core.profiling"
ALLOCATION_TRACEBACK_DEPTH = 64


class FlameNode:
    """One frame of a flame graph; ``value`` includes all children."""

    def __init__(self, name):
        self.name = name
        self.value = 0.0
        self.children = {}

    def child(self, name):
        if name not in self.children:
            self.children[name] = FlameNode(name)
        return self.children[name]

    def add_path(self, frames, value):
        """Add ``value`` along a call path, outermost frame first."""
        node = self
        node.value += value
        for frame in frames:
            node = node.child(frame)
            node.value += value


def _frame_label(func):
    filename, line, name = func
    if filename == "~":
        return name
    return f"{name} ({os.path.basename(filename)}:{line})"


def flame_tree_from_stats(stats, root_name="all", min_fraction=1e-3):
    """
    Build a flame graph tree from a ``pstats.Stats`` caller graph. Each call
    path gets the time its callee spent when called from that caller; cycles
    are cut at the first repeated function, and paths shorter than
    ``min_fraction`` of the total are dropped.
    """
    raw = stats.stats
    callees = {}
    for func, (_, _, _, _, callers) in raw.items():
        for caller, (_, _, _, cumulative) in callers.items():
            callees.setdefault(caller, []).append((func, cumulative))

    root = FlameNode(root_name)
    roots = [func for func, entry in raw.items() if not entry[4]]
    threshold = min_fraction * sum(raw[func][3] for func in roots)

    def expand(node, func, cumulative, on_path):
        node = node.child(_frame_label(func))
        node.value += cumulative
        for callee, callee_time in callees.get(func, []):
            if callee in on_path or callee_time <= threshold:
                continue
            expand(node, callee, min(callee_time, cumulative), on_path | {callee})

    for func in roots:
        cumulative = raw[func][3]
        root.value += cumulative
        expand(root, func, cumulative, {func})
    return root


def profile_compute(func, *args, **kwargs):
    """
    Run ``func`` under cProfile.

    Returns
    -------
    result :
        Whatever ``func`` returned.
    tree : FlameNode
        Flame graph of cumulative time [s].
    """
    profiler = cProfile.Profile()
    profiler.enable()
    try:
        result = func(*args, **kwargs)
    finally:
        profiler.disable()
    stats = pstats.Stats(profiler)
    return result, flame_tree_from_stats(stats)


def profile_allocations(func, *args, **kwargs):
    """
    Run ``func`` with tracemalloc tracing.

    Returns
    -------
    result :
        Whatever ``func`` returned.
    tree : FlameNode
        Flame graph of bytes still allocated at the end of the call, by the
        call path that allocated them.
    """
    was_tracing = tracemalloc.is_tracing()
    if not was_tracing:
        tracemalloc.start(ALLOCATION_TRACEBACK_DEPTH)
    try:
        result = func(*args, **kwargs)
        snapshot = tracemalloc.take_snapshot()
    finally:
        if not was_tracing:
            tracemalloc.stop()
    snapshot = snapshot.filter_traces([tracemalloc.Filter(False, tracemalloc.__file__)])
    root = FlameNode("all")
    for statistic in snapshot.statistics("traceback"):
        frames = [
            f"{os.path.basename(frame.filename)}:{frame.lineno}"
            for frame in reversed(statistic.traceback)
        ]
        root.add_path(frames, float(statistic.size))
    return result, root


def _render_node(node, total, unit, out):
    width = 100.0 * node.value / total if total > 0 else 0.0
    label = html.escape(node.name)
    out.append(
        f'<div class="frame" style="width:{width:.4f}%" title="{label}: '
        f'{node.value:.6g} {unit}"><span>{label}</span>'
    )
    children = sorted(node.children.values(), key=lambda n: n.value, reverse=True)
    if children:
        out.append('<div class="children">')
        for child in children:
            _render_node(child, node.value, unit, out)
        out.append("</div>")
    out.append("</div>")


def write_flame_html(path, tree, title, unit="s"):
    """Write ``tree`` to ``path`` as an icicle-style flame graph."""
    out = [
        "<!DOCTYPE html>",
        f"<html><head><meta charset=\"utf-8\"><title>{html.escape(title)}</title>",
        "<style>",
        "body{font-family:monospace;font-size:11px}",
        ".children{display:flex;width:100%}",
        ".frame{box-sizing:border-box;overflow:hidden;white-space:nowrap;"
        "border:1px solid #fff;background:#f5a142;min-width:0}",
        ".frame>span{display:block;padding:1px 2px}",
        "</style></head><body>",
        f"<h3>{html.escape(title)}</h3>",
        '<div class="children">',
    ]
    _render_node(tree, tree.value, unit, out)
    out.append("</div></body></html>")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(out))
    return path


def profile_gpu(func, *args, **kwargs):
    """Run ``func`` with the CUDA profiler enabled (``cupyx.profiler.profile``)."""
    import cupy
    from cupyx.profiler import profile, time_range

    with profile():
        with time_range("snowyland solve", color_id=0):
            result = func(*args, **kwargs)
        cupy.cuda.get_current_stream().synchronize()
    return result


def memory_tracker(label=""):
    """
    Decorator to measure memory usage before and after a function call.
    Prints the difference in MB.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            process = psutil.Process(os.getpid())
            mem_before = process.memory_info().rss / 1e6
            print(f"[{label}] Memory before: {mem_before:.2f} MB")
            result = func(*args, **kwargs)
            mem_after = process.memory_info().rss / 1e6
            print(f"[{label}] Memory after:  {mem_after:.2f} MB")
            print(f"[{label}] Memory delta:  {mem_after - mem_before:.2f} MB")
            return result

        return wrapper

    return decorator
