import base64
import io

import qrcode


class QRCodeRenderer:
    """Renders a PIX payload into an embeddable PNG data URL."""

    def __init__(self, box_size: int = 10, border: int = 2):
        self.box_size = box_size
        self.border = border

    def render(self, payload: str) -> str:
        qr = qrcode.QRCode(box_size=self.box_size, border=self.border)
        qr.add_data(payload)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        qr_b64 = base64.b64encode(buffered.getvalue()).decode("ascii")
        return f"data:image/png;base64,{qr_b64}"

    __call__ = render
