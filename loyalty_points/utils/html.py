from html import escape
from typing import Any, Dict

_BASE_STYLE = """
      body { font-family: Arial, sans-serif; padding: 20px; text-align: center; background-color: #f9f9f9; }
      .card { border: 1px solid #ddd; padding: 20px; max-width: 500px; margin: 0 auto; border-radius: 8px; background-color: white; box-shadow: 0 2px 8px rgba(0,0,0,0.1); }
      button { background-color: #4CAF50; color: white; border: none; padding: 10px 20px; font-size: 16px; margin: 10px 2px; cursor: pointer; border-radius: 4px; }
"""


def redeem_success_page(data: Dict[str, Any], ttl_minutes: int = 15) -> str:
    code = escape(str(data.get("discountCode", "")))
    points = escape(str(data.get("pointsRedeemed", "")))
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Loyalty Points Redeemed</title>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>{_BASE_STYLE}
      .code {{ font-size: 24px; font-weight: bold; padding: 15px; border: 2px dashed #4CAF50; margin: 20px 0; background-color: #f5f5f5; }}
      .timer {{ font-weight: bold; color: #d44; }}
      .expiry-warning {{ color: #d44; margin-top: 15px; font-size: 14px; }}
      .instructions {{ text-align: left; margin-top: 20px; padding: 15px; background-color: #fff3cd; border-left: 4px solid #ffc107; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>Success! Points Redeemed</h1>
    <p>You've redeemed {points} points for a &#8377;{points} discount.</p>
    <p>Use this discount code during checkout:</p>
    <div class="code" id="code">{code}</div>
    <p>This code expires in <span class="timer" id="countdown">{ttl_minutes}:00</span></p>
    <button onclick="copyCode()">Copy Code</button>
    <p class="expiry-warning">This discount is valid only for your current cart and will expire in {ttl_minutes} minutes.</p>
    <div class="instructions">
      <p><strong>What to do next:</strong></p>
      <ol>
        <li>Copy your discount code</li>
        <li>Return to your cart</li>
        <li>Proceed to checkout</li>
        <li>Apply the code in the discount field</li>
        <li>Complete your purchase</li>
      </ol>
    </div>
  </div>
  <script>
    function copyCode() {{
      var text = document.getElementById("code").innerText;
      if (navigator.clipboard) {{
        navigator.clipboard.writeText(text).then(function() {{ alert("Discount code copied!"); }});
      }}
    }}
    (function() {{
      var remaining = {ttl_minutes} * 60;
      var el = document.getElementById("countdown");
      var timer = setInterval(function() {{
        remaining--;
        if (remaining <= 0) {{
          clearInterval(timer);
          el.innerHTML = "EXPIRED";
          return;
        }}
        var s = remaining % 60;
        el.innerHTML = Math.floor(remaining / 60) + ":" + (s < 10 ? "0" + s : s);
      }}, 1000);
    }})();
  </script>
</body>
</html>
"""


def redeem_error_page(message: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Loyalty Points Error</title>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>{_BASE_STYLE}
      .error {{ color: #d44; font-weight: bold; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>Error</h1>
    <p class="error">{escape(message)}</p>
    <button onclick="window.close()">Close Window</button>
    <button onclick="window.history.back()">Go Back</button>
  </div>
</body>
</html>
"""
