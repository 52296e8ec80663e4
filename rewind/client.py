import httpx
import logging
from typing import Dict, Any, Optional

from rewind.config import settings

logger = logging.getLogger(__name__)


class ServiceClient:
    """Client for the external services Rewind talks to (Gemini, Whisper, Razorpay, JWKS)"""
    
    def __init__(self):
        self.timeout = httpx.Timeout(30.0)
        self.ai_timeout = httpx.Timeout(90.0)
    
    async def generate_content(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> str:
        """
        Send a single-turn prompt to Gemini and return the text of the first candidate.
        
        Returns an empty string when no API key is configured.
        """
        if not settings.gemini_api_key:
            logger.warning("⚠️ [Gemini] API key not configured, skipping critique call")
            return ""
        
        url = f"{settings.gemini_api_url}/models/{settings.gemini_model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        
        logger.info(f"🚀 [Gemini] POST {url}")
        
        try:
            async with httpx.AsyncClient(timeout=self.ai_timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    params={"key": settings.gemini_api_key},
                )
                response.raise_for_status()
                
                data = response.json()
                text = self._extract_gemini_text(data)
                logger.info(f"✅ [Gemini] {len(text)} chars")
                return text
                
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ [Gemini] HTTP {e.response.status_code}: {e.response.text}")
            raise
        except httpx.RequestError as e:
            logger.error(f"❌ [Gemini] Request failed: {e}")
            raise
    
    @staticmethod
    def _extract_gemini_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return ""
        return (parts[0].get("text") or "").strip()
    
    async def download_audio(self, audio_url: str) -> bytes:
        """Fetch the raw bytes of a recording"""
        logger.info("🚀 [Storage] GET recording audio")
        
        try:
            async with httpx.AsyncClient(timeout=self.ai_timeout, follow_redirects=True) as client:
                response = await client.get(audio_url)
                response.raise_for_status()
                return response.content
                
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ [Storage] HTTP {e.response.status_code} downloading audio")
            raise
        except httpx.RequestError as e:
            logger.error(f"❌ [Storage] Request failed: {e}")
            raise
    
    async def transcribe_audio(self, audio_url: str) -> str:
        """
        Download a recording and transcribe it with Whisper.
        
        Returns an empty string when no API key is configured.
        """
        if not settings.openai_api_key:
            logger.warning("⚠️ [Whisper] API key not configured, skipping transcription")
            return ""
        
        audio = await self.download_audio(audio_url)
        url = f"{settings.openai_api_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {settings.openai_api_key}"}
        files = {"file": ("audio.webm", audio, "audio/webm")}
        data = {"model": settings.whisper_model, "language": "en"}
        
        logger.info(f"🚀 [Whisper] POST {url} ({len(audio)} bytes)")
        
        try:
            async with httpx.AsyncClient(timeout=self.ai_timeout) as client:
                response = await client.post(url, headers=headers, files=files, data=data)
                response.raise_for_status()
                
                text = (response.json().get("text") or "").strip()
                logger.info(f"✅ [Whisper] transcript {len(text)} chars")
                return text
                
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ [Whisper] HTTP {e.response.status_code}: {e.response.text}")
            raise
        except httpx.RequestError as e:
            logger.error(f"❌ [Whisper] Request failed: {e}")
            raise
    
    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a Razorpay order.
        
        Args:
            amount: amount in paise
            currency: ISO currency code (INR)
            receipt: merchant receipt id
            notes: free-form metadata stored with the order
        """
        url = f"{settings.razorpay_api_url}/orders"
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        
        logger.info(f"🚀 [Razorpay] POST {url} amount={amount} receipt={receipt}")
        
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(settings.razorpay_key_id, settings.razorpay_key_secret),
            ) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                
                data = response.json()
                logger.info(f"✅ [Razorpay] order_id={data.get('id')}")
                return data
                
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ [Razorpay] HTTP {e.response.status_code}: {e.response.text}")
            raise
        except httpx.RequestError as e:
            logger.error(f"❌ [Razorpay] Request failed: {e}")
            raise
    
    async def fetch_jwks(self, url: str) -> Dict[str, Any]:
        """Fetch the identity provider's JSON Web Key Set"""
        logger.info(f"🚀 [JWKS] GET {url}")
        
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
                
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ [JWKS] HTTP {e.response.status_code}")
            raise
        except httpx.RequestError as e:
            logger.error(f"❌ [JWKS] Request failed: {e}")
            raise


# Global instance
service_client = ServiceClient()
