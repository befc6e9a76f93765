# services/qr_code_service.py
"""
QR code encode/decode service.
Renders payload text into QR images for invitees and reads QR codes back
from camera frames at the check-in station.
"""

import base64
import io
import logging

import cv2
import qrcode
from PIL import Image

logger = logging.getLogger('qr_code_service')

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H,
}


class CameraErrorCause:
    """Classified reasons a camera could not be acquired."""
    PERMISSION_DENIED = 'permission_denied'
    NOT_FOUND = 'not_found'
    INSECURE_CONTEXT = 'insecure_context'
    UNKNOWN = 'unknown'


CAMERA_ERROR_MESSAGES = {
    CameraErrorCause.PERMISSION_DENIED: 'Camera permission denied. Allow camera access and retry.',
    CameraErrorCause.NOT_FOUND: 'No camera found. Connect a webcam or try another device.',
    CameraErrorCause.INSECURE_CONTEXT: 'Use HTTPS or http://localhost in development.',
    CameraErrorCause.UNKNOWN: 'Unable to start camera.',
}

# Names reported by browser media APIs
_PLATFORM_ERROR_NAMES = {
    'NotAllowedError': CameraErrorCause.PERMISSION_DENIED,
    'PermissionDeniedError': CameraErrorCause.PERMISSION_DENIED,
    'NotFoundError': CameraErrorCause.NOT_FOUND,
    'DevicesNotFoundError': CameraErrorCause.NOT_FOUND,
    'SecurityError': CameraErrorCause.INSECURE_CONTEXT,
}


class CameraError(Exception):
    """Camera acquisition failure with a user-facing cause."""

    def __init__(self, cause, detail=None):
        self.cause = cause
        self.message = CAMERA_ERROR_MESSAGES.get(cause, CAMERA_ERROR_MESSAGES[CameraErrorCause.UNKNOWN])
        self.detail = detail
        super().__init__(self.message)


def classify_camera_error(error):
    """
    Map a platform error to a CameraErrorCause.

    Args:
        error: CameraError, Python exception, or a browser error name string

    Returns:
        str: CameraErrorCause value
    """
    if isinstance(error, CameraError):
        return error.cause
    if isinstance(error, str):
        return _PLATFORM_ERROR_NAMES.get(error, CameraErrorCause.UNKNOWN)
    if isinstance(error, PermissionError):
        return CameraErrorCause.PERMISSION_DENIED
    if isinstance(error, FileNotFoundError):
        return CameraErrorCause.NOT_FOUND
    return _PLATFORM_ERROR_NAMES.get(type(error).__name__, CameraErrorCause.UNKNOWN)


class QRCodeService:
    """Renders payload text into QR images."""

    @staticmethod
    def encode(text, target_width=512, margin=2, error_correction='M'):
        """
        Render text as a QR code image.

        Args:
            text: Payload text to embed
            target_width: Output width and height in pixels
            margin: Quiet zone width in modules
            error_correction: One of L, M, Q, H

        Returns:
            PIL.Image.Image: Square black-on-white QR image
        """
        level = ERROR_CORRECTION_LEVELS.get(str(error_correction).upper())
        if level is None:
            raise ValueError(f"Unknown error correction level: {error_correction}")

        qr = qrcode.QRCode(
            version=None,
            error_correction=level,
            box_size=10,
            border=margin,
        )
        qr.add_data(text)
        qr.make(fit=True)

        # Pick the largest whole-pixel module size that fits the target width
        total_modules = qr.modules_count + 2 * margin
        qr.box_size = max(1, target_width // total_modules)

        image = qr.make_image(fill_color="black", back_color="white").get_image().convert('RGB')
        if image.size[0] != target_width:
            image = image.resize((target_width, target_width), Image.Resampling.NEAREST)

        return image

    @staticmethod
    def to_png_bytes(image):
        """Serialize an image to PNG bytes."""
        buffer = io.BytesIO()
        image.save(buffer, format='PNG')
        return buffer.getvalue()

    @staticmethod
    def to_data_url(image):
        """Serialize an image to a data:image/png;base64 URL."""
        encoded = base64.b64encode(QRCodeService.to_png_bytes(image)).decode('ascii')
        return f"data:image/png;base64,{encoded}"


class QRCodeDecoder:
    """Finds and decodes a QR code in a single camera frame."""

    def __init__(self):
        self._detector = cv2.QRCodeDetector()

    def decode(self, frame):
        """
        Decode the QR code in a frame.

        Returns:
            str or None: Decoded text, or None when no readable code is present
        """
        if frame is None:
            return None
        try:
            text, points, _ = self._detector.detectAndDecode(frame)
        except cv2.error as e:
            # Transient decode errors are expected while scanning
            logger.debug(f"Frame decode error: {e}")
            return None
        return text or None


class OpenCVCamera:
    """Scoped capture device wrapper around cv2.VideoCapture."""

    def __init__(self, index=0, width=1280, height=720, facing_mode='environment'):
        self.index = index
        self.width = width
        self.height = height
        self.facing_mode = facing_mode
        self._capture = None

    @property
    def is_open(self):
        return self._capture is not None

    def constraints(self):
        """Media constraints for browser-side decoders using the same settings."""
        return {
            'video': {
                'facingMode': self.facing_mode,
                'width': {'ideal': self.width},
                'height': {'ideal': self.height},
            },
            'audio': False,
        }

    def open(self):
        """
        Acquire the capture device.

        Raises:
            CameraError: With a classified cause when the device cannot be opened
        """
        if self._capture is not None:
            return self

        try:
            capture = cv2.VideoCapture(self.index)
        except Exception as e:
            raise CameraError(classify_camera_error(e), str(e)) from e

        if not capture.isOpened():
            capture.release()
            raise CameraError(CameraErrorCause.NOT_FOUND, f"Camera index {self.index} unavailable")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture
        logger.info(f"Camera {self.index} opened ({self.width}x{self.height} requested)")
        return self

    def read(self):
        """Grab one frame, or None if the device returned nothing."""
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def release(self):
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"Camera {self.index} released")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
