# services/supabase_service.py
from supabase import create_client, Client
import os
from typing import Dict, List, Optional, Any
import uuid
from datetime import datetime, timezone

from models.meal_scan_schemas import DetectedFoodItem, MealScanRecord

def build_meal_name(items: List[DetectedFoodItem]) -> str:
    """Short label for a scan: first food, plus a count of the rest"""
    if not items:
        return "Meal scan"
    if len(items) == 1:
        return items[0].name
    return f"{items[0].name} + {len(items) - 1} more"

class SupabaseService:
    def __init__(self, client: Optional[Client] = None):
        if client is not None:
            self.client = client
            return

        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")

        self.client: Client = create_client(url, key)
        print("✅ Supabase client initialized")

    # Auth
    async def get_user_id_from_token(self, access_token: str) -> Optional[str]:
        """Resolve a Supabase access token to the user's id, None if it is not valid"""
        try:
            response = self.client.auth.get_user(access_token)
            user = getattr(response, "user", None)
            user_id = getattr(user, "id", None)
            return str(user_id) if user_id else None

        except Exception as e:
            print(f"❌ Token verification failed: {e}")
            return None

    # Meal scan operations
    async def save_meal_scan(
        self,
        items: List[DetectedFoodItem],
        user_id: str,
        image_ref: str
    ) -> Optional[str]:
        """
        Write the audit row for a successful analysis.
        Returns the new scan id, or None if the insert failed - a storage error
        must never turn a successful analysis into a failed request.
        """
        try:
            scan = MealScanRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                image_url=image_ref,
                detected_foods=items,
                total_calories=sum(item.calories for item in items),
                meal_name=build_meal_name(items),
                scan_date=datetime.now(timezone.utc).isoformat()
            )

            response = self.client.table('meal_scans').insert(
                scan.model_dump(mode="json", exclude_none=True)
            ).execute()

            if response.data:
                scan_id = response.data[0].get('id', scan.id)
                print(f"✅ Meal scan saved: {scan_id} ({scan.meal_name}, {scan.total_calories} kcal)")
                return scan_id
            else:
                print("⚠️ No data returned from meal_scans insert")
                return None

        except Exception as e:
            print(f"❌ Error saving meal scan for user {user_id}: {e}")
            return None

    # Health check method
    async def health_check(self) -> Dict[str, Any]:
        """Check if Supabase connection is working"""
        try:
            self.client.table('meal_scans').select('id').limit(1).execute()

            return {
                "status": "healthy",
                "message": "Supabase connection working",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "message": f"Supabase connection failed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

# Global instance - we'll initialize this in main.py
supabase_service = None

def get_supabase_service() -> SupabaseService:
    """Get the global Supabase service instance"""
    global supabase_service
    if supabase_service is None:
        supabase_service = SupabaseService()
    return supabase_service

def init_supabase_service():
    """Initialize the global Supabase service"""
    global supabase_service
    supabase_service = SupabaseService()
    return supabase_service
