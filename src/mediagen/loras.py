# ------------------------------ LoRA catalog ------------------------------
#
# Named LoRAs usable with --lora on LoRA-capable fal models. The keyword is
# prepended to the prompt; an empty keyword adds nothing.

from __future__ import annotations

import random
from typing import Optional

from .options import LoraSelection

CIVITAI = "https://civitai.com/api/download/models/{id}?type=Model&format=SafeTensor"


def _civitai(model_id: int, scale: float = 1.0, keyword: str = "") -> LoraSelection:
    return LoraSelection(CIVITAI.format(id=model_id), scale, keyword)


LORAS = {
    "disney": _civitai(825954, keyword="DisneyRenstyle"),
    "lucid": _civitai(857586, keyword="Lucid Dream"),
    "retrowave": _civitai(913440, keyword="ck-rw, in the style of ck-rw,"),
    "incase": _civitai(857267, keyword="Incase art"),
    "eldritch": _civitai(792184, keyword="Eldritch Comic"),
    "details": _civitai(955535, keyword="aidmafluxpro1.1"),
    "details_strong": _civitai(839637),
    "mj": _civitai(827351, keyword="aidmaMJ6.1"),
    "fantasy": _civitai(880134),
    "poly": _civitai(812320),
    "cinematic": _civitai(857668, keyword="cinematic, cinematic still image, "),
    "anime-flat": _civitai(838667, scale=2.0, keyword="Flat colour anime style image showing"),
    "anime": _civitai(753053, keyword="MythAn1m3, "),
    "anime-portrait": _civitai(753053, keyword="MythP0rt, "),
    "niji": _civitai(855516, scale=0.9, keyword="aidmanijiv6, "),
    "fantasy-core": _civitai(905789, keyword="This is a highly detailed, CGI-rendered digital artwork depicting a "),
    "goofy": _civitai(830009, keyword="3d render, "),
    "psychedelic": _civitai(983116, scale=0.6, keyword="ArsMovieStill, movie still from a 60s psychedelic movie, "),
    "neurocore": _civitai(1010560, keyword="A digital artwork in the style of cknc, "),
    "anime-realistic": _civitai(1023735, keyword="Realistic anime style, "),
}


def random_lora(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(sorted(LORAS))
