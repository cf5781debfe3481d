import asyncio
from httpx import AsyncClient, ASGITransport
import sys
import os

# Add parent dir to path to find main
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from database import engine, Base, async_session_maker
from llm.manager import build_orchestrator
from services.point_rules import seed_default_point_rules
from services.session_token import create_session_token


async def verify_points_flow_async():
    print("🔍 Verifying points ledger and AI pipeline...")

    # 1. Setup DB and reward rules
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        await seed_default_point_rules(session)

    app.state.llm = build_orchestrator()
    headers = {"Authorization": f"Bearer {create_session_token('verify-user', role='admin')['token']}"}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:

        # 2. Ledger
        response = await client.get("/points/summary", headers=headers)
        if response.status_code != 200:
            print(f"❌ Summary failed: {response.text}")
            return
        print(f"✅ Balance: {response.json()['current_balance']}")

        response = await client.post("/points/daily-login", headers=headers)
        print(f"🎯 Daily login: {response.json()}")

        response = await client.get("/points/transactions", headers=headers)
        for item in response.json().get("items", []):
            print(f"  - {item['type']} {item['amount']} ({item['source']}) -> {item['balance_after']}")

        # 3. Providers
        print(f"🤖 Provider order: {app.state.llm.available_providers()}")
        response = await client.get("/ai/health", headers=headers)
        print(f"🩺 Provider health: {response.json()}")

        # 4. Question generation (calls the LLM)
        print("🚀 Generating survey questions...")
        response = await client.post(
            "/ai/suggest",
            json={"topic": "Remote work satisfaction", "question_count": 3},
            headers=headers,
        )
        if response.status_code != 200:
            print(f"❌ Question generation failed: {response.text}")
        else:
            for question in response.json().get("questions", []):
                print(f"  - [{question['type']}] {question['content']}")

    await app.state.llm.aclose()


if __name__ == "__main__":
    asyncio.run(verify_points_flow_async())
