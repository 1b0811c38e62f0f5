import os
from typing import List, Optional, Tuple
from uuid import uuid4

from flask import current_app
from werkzeug.utils import secure_filename

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg"}
ALLOWED_IMAGE_MIMETYPES = {"image/png", "image/jpeg", "image/jpg"}
PRODUCT_IMAGE_MAX_BYTES = 5 * 1024 * 1024
PROFILE_PICTURE_MAX_BYTES = 5 * 1024 * 1024
CATEGORY_ICON_MAX_BYTES = 2 * 1024 * 1024


def allowed_image_extension(filename: str) -> bool:
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if not extension:
        return False
    return extension in ALLOWED_IMAGE_EXTENSIONS


def measure_upload(image_file) -> int:
    stream = image_file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def save_image(image_file, max_bytes: int = PRODUCT_IMAGE_MAX_BYTES) -> Tuple[Optional[str], Optional[str]]:
    if not image_file or not getattr(image_file, "filename", ""):
        return None, "An image file is required."

    original_filename = secure_filename(image_file.filename)
    if not original_filename:
        return None, "Please choose a valid file name."

    mimetype = (image_file.mimetype or "").lower()
    if not allowed_image_extension(original_filename) or (
        mimetype and mimetype not in ALLOWED_IMAGE_MIMETYPES
    ):
        return None, "Unsupported image format. Upload JPEG, PNG, or JPG files."

    if measure_upload(image_file) > max_bytes:
        return None, f"Image size must be less than {max_bytes // (1024 * 1024)}MB"

    extension = os.path.splitext(original_filename)[1].lower()
    unique_filename = f"{uuid4().hex}{extension}"
    destination = os.path.join(current_app.config["UPLOAD_FOLDER"], unique_filename)

    try:
        image_file.save(destination)
    except OSError:
        current_app.logger.warning("Unable to store upload %s", original_filename)
        return None, "We could not store the uploaded image. Please try again."

    return unique_filename, None


def save_images(image_files, max_bytes: int = PRODUCT_IMAGE_MAX_BYTES) -> Tuple[List[str], Optional[str]]:
    saved_filenames: List[str] = []
    for image_file in image_files or []:
        if not image_file or not getattr(image_file, "filename", ""):
            continue
        new_filename, image_error = save_image(image_file, max_bytes)
        if image_error:
            remove_image(saved_filenames)
            return [], image_error
        saved_filenames.append(new_filename)
    return saved_filenames, None


def remove_image(filename) -> None:
    if not filename:
        return

    if isinstance(filename, (list, tuple, set)):
        for item in filename:
            remove_image(item)
        return

    target = os.path.join(current_app.config["UPLOAD_FOLDER"], os.path.basename(str(filename)))
    try:
        os.remove(target)
    except FileNotFoundError:
        return
    except OSError:
        current_app.logger.warning("Unable to remove upload %s", filename)


def upload_url(filename: Optional[str]) -> str:
    if not filename:
        return ""
    return f"/uploads/{filename}"
