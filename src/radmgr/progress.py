from dataclasses import dataclass, field
from typing import List, Optional
from tqdm import tqdm


@dataclass
class StepProgress:
    """One bar for a fixed list of named steps; a no-op when disabled."""
    steps: List[str]
    enabled: bool = True
    bar: Optional[tqdm] = field(default=None, init=False)

    def __enter__(self):
        if self.enabled:
            self.bar = tqdm(total=len(self.steps), desc="Starting...", leave=True,
                            disable=False, dynamic_ncols=True)
        return self

    def __exit__(self, *exc):
        if self.bar is not None:
            self.bar.close()
            self.bar = None
        return False

    def start(self, step: str):
        if self.bar is None: return
        self.bar.set_description(step, refresh=True)

    def advance(self, n: int = 1):
        if self.bar is None: return
        self.bar.update(n)

    def done(self, tail_text: str = "Done"):
        if self.bar is None: return
        if self.bar.total and self.bar.n < self.bar.total:
            self.bar.n = self.bar.total
            self.bar.refresh()
        self.bar.set_postfix_str(tail_text, refresh=True)
