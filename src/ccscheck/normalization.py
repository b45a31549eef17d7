from __future__ import annotations
from typing import Optional, Tuple

def parse_read_name(name: str) -> Tuple[str, Optional[int]]:
    """
    Split a PacBio read name into (movie, hole_number).

    Input examples:
      'm54006_160504_020705/4194370/ccs'         -> ('m54006_160504_020705', 4194370)
      'm54006_160504_020705/4194370/ccs/fwd'     -> ('m54006_160504_020705', 4194370)
      'm54006_160504_020705/4194370/100_2000'    -> ('m54006_160504_020705', 4194370)
      'read_17'                                  -> ('read_17', None)

    Heuristic:
      - Split at '/'; the first token is the movie.
      - The second token is the hole number when it is all digits.
    """
    if not isinstance(name, str) or not name:
        return "", None
    toks = name.split("/")
    if len(toks) < 2:
        return name, None
    movie, zmw = toks[0], toks[1]
    return movie, (int(zmw) if zmw.isdigit() else None)
