from PIL import Image
from rest_framework import serializers

MAX_PHOTO_BYTES = 4 * 1024 * 1024  # 4 MB


def validate_photo(photo, square=False):
    """Check an uploaded image for size, readability and, optionally, shape."""
    if not photo:
        return photo

    if photo.size > MAX_PHOTO_BYTES:
        raise serializers.ValidationError('The photo must not be larger than 4 MB.')

    try:
        image = Image.open(photo)
        image.load()
        width, height = image.size
    except (OSError, SyntaxError, ValueError):
        raise serializers.ValidationError('Could not read the image. Upload a valid file.')
    finally:
        if hasattr(photo, 'seek'):
            photo.seek(0)

    if square and width != height:
        raise serializers.ValidationError('The photo must be square (width equal to height).')

    return photo


def validate_staff_photo(photo):
    return validate_photo(photo, square=True)
