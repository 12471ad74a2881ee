from io import BytesIO

import pytest
from PIL import Image


@pytest.fixture
def png_payload():
    buffer = BytesIO()
    Image.new("RGB", (200, 100), (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()
