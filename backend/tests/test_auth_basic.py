import auth
import models


def test_password_hash_and_verify_roundtrip():
    """Пароль после хэширования успешно проходит verify, а другой пароль нет."""
    password = "My_S3cret_pass"

    hashed = auth.get_password_hash(password)

    assert hashed != password
    assert auth.verify_password(password, hashed) is True
    assert auth.verify_password("other_pass", hashed) is False


def test_access_token_carries_owner_id_and_role():
    """sub в токене: id владельца строкой, плюс роль и exp."""
    token = auth.create_access_token(42, "owner")
    assert len(token.split(".")) == 3

    payload = auth.verify_token(token)
    assert payload["sub"] == "42"
    assert payload["role"] == "owner"
    assert "exp" in payload


def test_verify_token_returns_none_for_invalid_token():
    assert auth.verify_token("invalid.token.value") is None


def test_authenticate_owner(db):
    db.add(models.User(username="nyama_choma", password=auth.get_password_hash("grill-master"), role="owner"))
    db.commit()

    assert auth.authenticate_owner(db, "nyama_choma", "grill-master").username == "nyama_choma"
    assert auth.authenticate_owner(db, "nyama_choma", "wrong") is None
    assert auth.authenticate_owner(db, "nobody", "grill-master") is None


def test_owner_id_from_header():
    """Только Bearer-токен владельца даёт id; мусор и чужие роли дают None."""
    token = auth.create_access_token(7, "owner")

    assert auth.owner_id_from_header(f"Bearer {token}") == 7
    assert auth.owner_id_from_header(token) is None
    assert auth.owner_id_from_header("Bearer invalid.token.value") is None
    assert auth.owner_id_from_header(None) is None
    assert auth.owner_id_from_header(f"Bearer {auth.create_access_token(7, 'customer')}") is None
