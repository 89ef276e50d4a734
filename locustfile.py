from locust import HttpUser, task, between
import random

ADDRESS = {
    "street": "1 Load Test Way",
    "city": "Springfield",
    "state": "IL",
    "zipCode": "62701",
    "country": "US",
}


class ShopperUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Sign up a fresh shopper for this simulated client
        email = f"shopper_{random.randint(1, 1_000_000_000)}@example.com"
        r = self.client.post("/api/auth/signup", json={
            "firstName": "Load",
            "lastName": "Tester",
            "email": email,
            "password": "loadtest123",
            "confirmPassword": "loadtest123",
        })
        self.headers = {}
        if r.status_code == 201:
            self.headers = {"Authorization": f"Bearer {r.json()['token']}"}
        self.product_ids = []

    @task(5)
    def browse(self):
        r = self.client.get("/api/products", params={"page": random.randint(1, 3), "limit": 20})
        if r.status_code == 200:
            self.product_ids = [p["id"] for p in r.json()["data"] if p["stock"] > 0]

    @task(3)
    def view_product(self):
        if not self.product_ids:
            return
        pid = random.choice(self.product_ids)
        self.client.get(f"/api/products/{pid}", name="/api/products/[id]")

    @task(2)
    def add_to_cart(self):
        if not self.headers or not self.product_ids:
            return
        self.client.post(
            "/api/cart/add",
            json={"productId": random.choice(self.product_ids), "quantity": 1},
            headers=self.headers,
        )

    @task(1)
    def checkout(self):
        if not self.headers:
            return
        with self.client.post(
            "/api/orders",
            json={"shippingAddress": ADDRESS, "paymentMethod": "credit_card"},
            headers=self.headers,
            catch_response=True,
        ) as r:
            # an empty cart or sold-out item is an expected outcome under load
            if r.status_code == 400:
                r.success()
