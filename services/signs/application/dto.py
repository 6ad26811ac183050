from dataclasses import dataclass
from typing import BinaryIO


@dataclass(frozen=True)
class CreateSignCommand:
    filename: str
    content_type: str
    size_bytes: int | None
    stream: BinaryIO
    gloss: str = ""
    description: str = ""
    category: str = ""
