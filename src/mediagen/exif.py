import json
import os
from datetime import datetime
from pathlib import Path
from typing import Mapping

import piexif
import piexif.helper
from PIL import Image, UnidentifiedImageError

SOFTWARE = "mediagen"

# Formats Pillow can write EXIF into
EXIF_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


def set_exif_data(image_path, metadata: Mapping, *, file_time: datetime | None = None, quiet: bool = True) -> bool:
    """Embed generation parameters into the EXIF block of an image file.

    The provider and endpoint go into Make and Model, the prompt into
    ImageDescription, and the whole ``metadata`` mapping as JSON into
    UserComment, so a file remains traceable to the request that produced it.

    Args:
        image_path (Path | str): Image file to update in place.
        metadata: Generation parameters. ``provider``, ``model`` and ``prompt``
            are used for the dedicated tags when present.
        file_time: Optional datetime used for timestamp fields. If None, the
            file's mtime is used.
        quiet: If True, suppresses print messages. If False, prints status.

    Returns:
        bool: True on success, False on failure (including missing file).
    """
    p = Path(image_path)

    if not p.exists():
        if not quiet:
            print(f"File not found: {p}")
        return False

    try:
        img = Image.open(p)
        img.load()
    except (OSError, UnidentifiedImageError) as e:
        if not quiet:
            print(f"Can't open image {p}: {e}")
        return False

    exif_dict = {
        "0th": {},  # Primary image attributes
        "Exif": {},  # Time and comment
        "GPS": {},
        "Interop": {},
        "1st": {},
        "thumbnail": None,
    }

    if file_time is None:
        file_time = datetime.fromtimestamp(os.path.getmtime(p))
    formatted_date = file_time.strftime("%Y:%m:%d %H:%M:%S")

    if metadata.get("provider"):
        exif_dict["0th"][piexif.ImageIFD.Make] = str(metadata["provider"]).encode()
    if metadata.get("model"):
        exif_dict["0th"][piexif.ImageIFD.Model] = str(metadata["model"]).encode()
    if metadata.get("prompt"):
        exif_dict["0th"][piexif.ImageIFD.ImageDescription] = str(metadata["prompt"]).encode("utf-8")
    exif_dict["0th"][piexif.ImageIFD.Software] = SOFTWARE.encode()
    exif_dict["0th"][piexif.ImageIFD.DateTime] = formatted_date.encode()

    exif_dict["Exif"][piexif.ExifIFD.DateTimeOriginal] = formatted_date.encode()
    exif_dict["Exif"][piexif.ExifIFD.DateTimeDigitized] = formatted_date.encode()
    exif_dict["Exif"][piexif.ExifIFD.UserComment] = piexif.helper.UserComment.dump(
        json.dumps(dict(metadata), default=str, ensure_ascii=False), encoding="unicode")

    try:
        exif_bytes = piexif.dump(exif_dict)
        img.save(p, exif=exif_bytes)
        if not quiet:
            print(f"Updated EXIF data for {p}")
        return True
    except (OSError, ValueError) as e:
        if not quiet:
            print(f"Error updating EXIF data for {p}: {e}")
        return False
    finally:
        img.close()
