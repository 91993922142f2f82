from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class FellowshipTag:
    id: int
    tag: str
    is_weakness: bool = False


@dataclass
class Fellowship:
    id: int
    name: str
    tags: List[FellowshipTag] = field(default_factory=list)

    def find_tag(self, tag_id: int) -> Optional[FellowshipTag]:
        return next((tag for tag in self.tags if tag.id == tag_id), None)
