"""Seed documentation corpus used when no crawler-backed store is configured."""

from __future__ import annotations

from opti_context.types import DocumentationItem, ProductId

DEFAULT_DOCUMENTATION: tuple[DocumentationItem, ...] = (
    DocumentationItem(
        title="Handler chain pattern",
        url="https://docs.optimizely.com/configured-commerce/docs/handler-chain-pattern",
        products=(ProductId.CONFIGURED_COMMERCE,),
        last_updated="2024-01-15",
        content="""## Handler chain pattern
Configured Commerce executes business logic through ordered handler chains.
Each handler declares an order and can run before or after the built-in handlers.

Register a custom handler by subclassing the handler base type:

```csharp
[DependencyName(nameof(AddCartLineHandler))]
public class CustomAddCartLineHandler : HandlerBase<AddCartLineParameter, AddCartLineResult>
{
    public override int Order => 550;

    public override AddCartLineResult Execute(IUnitOfWork unitOfWork, AddCartLineParameter parameter, AddCartLineResult result)
    {
        return this.NextHandler.Execute(unitOfWork, parameter, result);
    }
}
```

Keep handlers small and always call the next handler unless the chain must stop.
""",
    ),
    DocumentationItem(
        title="Extension development",
        url="https://docs.optimizely.com/configured-commerce/docs/extension-development",
        products=(ProductId.CONFIGURED_COMMERCE,),
        last_updated="2024-01-10",
        content="""## Extension development
Place customizations in the Extensions project so upgrades do not overwrite them.
Pipelines expose pipes that run in order and can be extended the same way as handlers.

```csharp
public sealed class CustomPricingPipe : IPipe<GetProductPricingParameter, GetProductPricingResult>
{
    public int Order => 450;

    public GetProductPricingResult Execute(IUnitOfWork unitOfWork, GetProductPricingParameter parameter, GetProductPricingResult result)
    {
        return result;
    }
}
```
""",
    ),
    DocumentationItem(
        title="Blueprint development",
        url="https://docs.optimizely.com/configured-commerce/docs/blueprint-development",
        products=(ProductId.CONFIGURED_COMMERCE,),
        last_updated="2023-11-02",
        content="""## Blueprint development
Spire blueprints customize the storefront with React widgets and pages.

```tsx
const CustomBanner = ({ title }: { title: string }) => <Typography variant="h2">{title}</Typography>;
export default { component: CustomBanner, definition: { group: "Custom", fieldDefinitions: [] } };
```
""",
    ),
    DocumentationItem(
        title="Content types",
        url="https://docs.optimizely.com/content-management-system/docs/content-types",
        products=(ProductId.CMS_PAAS,),
        last_updated="2024-02-01",
        content="""## Content types
Content types are C# classes decorated with ContentType and deriving from PageData or BlockData.

```csharp
[ContentType(DisplayName = "Article", GUID = "0d7a2f6e-3b64-4c8e-9f5e-8a8a1f3a4b21")]
public class ArticlePage : PageData
{
    [Display(Name = "Heading", Order = 10)]
    public virtual string Heading { get; set; }
}
```

Always assign a stable GUID so content survives renames.
""",
    ),
    DocumentationItem(
        title="MVC templates",
        url="https://docs.optimizely.com/content-management-system/docs/mvc-templates",
        products=(ProductId.CMS_PAAS,),
        last_updated="2023-12-12",
        content="""## MVC templates
Page controllers derive from PageController<T> and render a view per content type.

```csharp
public class ArticlePageController : PageController<ArticlePage>
{
    public IActionResult Index(ArticlePage currentPage) => View(currentPage);
}
```

Use PropertyFor in views so properties stay editable in on-page edit mode.
""",
    ),
    DocumentationItem(
        title="Content Delivery API",
        url="https://docs.developers.optimizely.com/content-management-system/content-delivery-api",
        products=(ProductId.CMS_PAAS, ProductId.CMS_SAAS),
        last_updated="2024-03-05",
        content="""## Content Delivery API
Headless front ends read content as JSON from the Content Delivery API or Optimizely Graph.

```typescript
const response = await fetch(`${baseUrl}/api/episerver/v3.0/content/${contentId}`, {
  headers: { Accept: "application/json", "Accept-Language": "en" },
});
```
""",
    ),
    DocumentationItem(
        title="JavaScript SDK",
        url="https://docs.optimizely.com/web-experimentation/docs/javascript-sdk",
        products=(ProductId.WEB_EXPERIMENTATION,),
        last_updated="2024-01-20",
        content="""## JavaScript SDK
Initialize the client once with the project datafile and reuse the instance.

```javascript
const optimizely = optimizelySdk.createInstance({ datafile });
const enabled = optimizely.isFeatureEnabled("new_checkout", userId);
```

Track conversion events after the user completes the goal.
""",
    ),
    DocumentationItem(
        title="Experiment setup",
        url="https://docs.optimizely.com/web-experimentation/docs/experiment-setup",
        products=(ProductId.WEB_EXPERIMENTATION,),
        last_updated="2023-10-30",
        content="""## Experiment setup
Define audiences, variations and metrics before starting an experiment.
Run experiments until they reach statistical significance before acting on results.
""",
    ),
    DocumentationItem(
        title="Node SDK",
        url="https://docs.optimizely.com/feature-experimentation/docs/node-sdk",
        products=(ProductId.FEATURE_EXPERIMENTATION,),
        last_updated="2024-02-18",
        content="""## Node SDK
Create a user context and call decide to evaluate a flag.

```typescript
const user = optimizelyClient.createUserContext(userId, { plan: "pro" });
const decision = user.decide("checkout_flow");
if (decision.enabled) {
  renderNewCheckout(decision.variables);
}
```

Close the client on shutdown so queued events are flushed.
""",
    ),
    DocumentationItem(
        title="Personalization",
        url="https://docs.optimizely.com/digital-experience-platform/docs/personalization",
        products=(ProductId.DXP,),
        last_updated="2023-09-14",
        content="""## Personalization
Visitor groups target content to audiences based on criteria such as geography or behavior.

```csharp
public class ReturningVisitorCriterion : CriterionBase<ReturningVisitorModel>
{
    public override bool IsMatch(IPrincipal principal, HttpContext httpContext) => httpContext.Request.Cookies.ContainsKey("returning");
}
```
""",
    ),
    DocumentationItem(
        title="Data Platform overview",
        url="https://docs.developers.optimizely.com/optimizely-data-platform",
        products=(ProductId.DATA_PLATFORM,),
        last_updated="2023-08-01",
        content="""## Data Platform overview
The data platform unifies customer data and events for segmentation and activation.
Send events with a stable customer identifier so profiles merge correctly.
""",
    ),
)
