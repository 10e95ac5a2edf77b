from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from ..models.schemas import Actor


@dataclass
class UserContext:
    api_key: str
    user_id: str
    name: str
    role: str

    def as_actor(self, ip_address: str = "127.0.0.1") -> Actor:
        return Actor(user_id=self.user_id, name=self.name, ip_address=ip_address)


# api key -> (user id, display name, role)
PHARMACY_KEYS = {
    "demo-admin-key": ("admin-1", "Pharmacy Admin", "admin"),
    "demo-delivery-key": ("rider-1", "Delivery Rider", "delivery"),
    "demo-customer-key": ("customer-1", "Demo Customer", "customer"),
}


def require_auth(x_api_key: str = Header(...)) -> UserContext:
    if x_api_key not in PHARMACY_KEYS:
        raise HTTPException(status_code=401, detail="Invalid API key")

    user_id, name, role = PHARMACY_KEYS[x_api_key]
    return UserContext(api_key=x_api_key, user_id=user_id, name=name, role=role)


def require_role(*allowed: str):
    def checker(user: UserContext = Depends(require_auth)):
        if user.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Requires role: {' or '.join(allowed)}"
            )
        return user
    return checker

